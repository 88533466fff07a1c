"""
Message Schemas

Pydantic models for the transport bridge: incoming chat messages and tip
events, acknowledgments, and the outbound messages the bridge relays.
"""

from pydantic import BaseModel, Field
from datetime import datetime
from typing import List, Optional


class IncomingMessage(BaseModel):
    """A chat message delivered by the transport bridge."""

    event_id: str = Field(..., description="Unique event id of the message")
    user_id: str = Field(..., description="Author of the message")
    channel_id: str = Field(..., description="Channel the message was posted in")
    thread_id: Optional[str] = Field(None, description="Thread id if the message is a thread reply")
    message: str = Field(..., description="The message text")
    is_mentioned: bool = Field(False, description="True if the bot was mentioned")

    class Config:
        json_schema_extra = {
            "example": {
                "event_id": "0xevent",
                "user_id": "0xuser",
                "channel_id": "channel-1",
                "thread_id": None,
                "message": "@docsbot how do I register a webhook?",
                "is_mentioned": True,
            }
        }


class TipEvent(BaseModel):
    """A tip sent by a user, amount in the asset's smallest unit (wei)."""

    event_id: Optional[str] = Field(None, description="Unique event id of the tip")
    user_id: str = Field(..., description="User who sent the tip")
    channel_id: str = Field(..., description="Channel the tipped message lives in")
    receiver_address: str = Field(..., description="Address that received the tip")
    amount: int = Field(..., ge=0, description="Tip amount in smallest units")

    class Config:
        json_schema_extra = {
            "example": {
                "event_id": "0xtip",
                "user_id": "0xuser",
                "channel_id": "channel-1",
                "receiver_address": "0xbot",
                "amount": "158000000000000",
            }
        }


class MessageReceived(BaseModel):
    received: bool = Field(..., description="Always True if we got here")
    outcome: str = Field(..., description="How the message was handled")
    timestamp: datetime = Field(..., description="When we received it")


class TipReceived(BaseModel):
    received: bool = Field(..., description="Always True if we got here")
    outcome: str = Field(..., description="How the tip was handled")
    timestamp: datetime = Field(..., description="When we received it")


class ChatResponse(BaseModel):
    """A message for the bridge to post."""

    event_id: str = Field(..., description="Id of the outbound message")
    channel_id: str = Field(..., description="Which channel to send to")
    message: str = Field(..., description="What to say")
    thread_id: Optional[str] = Field(None, description="Thread to reply in, if any")


class SendRequest(BaseModel):
    channel_id: Optional[str] = Field(None, description="Only return messages for this channel")
    limit: Optional[int] = Field(None, ge=0, description="Maximum number of messages to return")


class SendResponse(BaseModel):
    messages: List[ChatResponse] = Field(default_factory=list)
