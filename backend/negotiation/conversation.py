"""In-memory conversation accumulator for a single negotiation.

The caller owns one ``ConversationContext`` per negotiation and feeds each
turn's ``ProcessResponse`` back into it; nothing is persisted.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import List, Literal, Optional

from negotiation.schemas import ExtractedQuoteData, OrderInformation, ProcessRequest, ProcessResponse

Role = Literal["agent", "supplier"]


@dataclass
class ConversationMessage:
    role: Role
    content: str
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class ConversationContext:
    """Ordered agent/supplier messages plus the extracted data merged so far."""

    def __init__(self) -> None:
        self._messages: List[ConversationMessage] = []
        self.extracted_data: Optional[ExtractedQuoteData] = None
        self.turn_number = 0

    def add_agent_message(self, content: str) -> None:
        self._messages.append(ConversationMessage(role="agent", content=content))

    def add_supplier_message(self, content: str) -> None:
        self._messages.append(ConversationMessage(role="supplier", content=content))

    @property
    def messages(self) -> List[ConversationMessage]:
        return list(self._messages)

    @property
    def message_count(self) -> int:
        return len(self._messages)

    def format_for_prompt(self) -> str:
        """Readable thread for inclusion in prompts."""
        if not self._messages:
            return "No prior messages."
        blocks = []
        for message in self._messages:
            label = "AGENT (sent)" if message.role == "agent" else "SUPPLIER (received)"
            blocks.append(f"[{label}]\n{message.content}")
        return "\n\n---\n\n".join(blocks)

    def build_request(self, supplier_message: str, order_information: OrderInformation) -> ProcessRequest:
        """Request for the next turn, carrying history and prior extraction."""
        return ProcessRequest(
            supplier_message=supplier_message,
            order_information=order_information,
            conversation_history=self.format_for_prompt() if self._messages else None,
            prior_extracted_data=self.extracted_data,
            turn_number=self.turn_number + 1,
        )

    def record_turn(self, supplier_message: str, response: ProcessResponse) -> None:
        """Append the turn's messages and merge its extracted data."""
        self.add_supplier_message(supplier_message)
        outbound = None
        if response.counter_offer is not None:
            outbound = response.counter_offer.draft_email
        elif response.clarification_email:
            outbound = response.clarification_email
        if outbound:
            self.add_agent_message(outbound)

        if response.extracted_data is not None:
            if self.extracted_data is None:
                self.extracted_data = response.extracted_data
            else:
                self.extracted_data = self.extracted_data.merge(response.extracted_data)
        self.turn_number += 1
