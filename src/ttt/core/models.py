"""Records and operation results shared by the direct client, the daemon and the undo ledger.

Every model serialises with camelCase keys (the wire and ledger format) and
accepts either camelCase or snake_case on input.
"""

import time
import uuid
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class WireModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


class TodoList(WireModel):
    """A list row. `id` is assigned at creation and never changes."""
    id: str
    name: str = ""
    purpose: Optional[str] = None
    system_prompt: Optional[str] = None
    background_colour: Optional[str] = None
    icon: Optional[str] = None
    type: Optional[str] = None
    template: Optional[str] = None
    number: Optional[float] = None
    code: Optional[str] = None


class Todo(WireModel):
    """A todo row. `list_id` is fixed at creation."""
    id: str
    list_id: str = ""
    text: str = ""
    notes: Optional[str] = None
    date: Optional[str] = None
    time: Optional[str] = None
    url: Optional[str] = None
    emoji: Optional[str] = None
    email: Optional[str] = None
    street_address: Optional[str] = None
    number: Optional[float] = None
    amount: Optional[float] = None
    five_star_rating: Optional[int] = None
    done: bool = False
    type: Optional[str] = None
    category: Optional[str] = None


class BatchAddItem(WireModel):
    text: str
    fields: Dict[str, Any] = Field(default_factory=dict)


class BatchUpdateItem(WireModel):
    id: str
    fields: Dict[str, Any]


class TodoUpdateResult(WireModel):
    """Values of the changed fields as they were before the update."""
    id: str
    previous_fields: Dict[str, Any] = Field(default_factory=dict)


class ListUpdateResult(WireModel):
    id: str
    previous_fields: Dict[str, Any] = Field(default_factory=dict)


# Wire names of the fields callers may change after creation
TODO_UPDATABLE_FIELDS = frozenset({
    "text", "notes", "date", "time", "url", "emoji", "email", "streetAddress",
    "number", "amount", "fiveStarRating", "done", "type", "category",
})

LIST_UPDATABLE_FIELDS = frozenset({
    "name", "purpose", "systemPrompt", "backgroundColour", "icon", "type", "template",
})


def new_id(prefix: str) -> str:
    """Generate `<prefix>_<epoch ms>_<random>`, e.g. todo_1718000000000_3fa2c1."""
    return f"{prefix}_{int(time.time() * 1000)}_{uuid.uuid4().hex[:6]}"
