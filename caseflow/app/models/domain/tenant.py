"""Caller identity supplied by the authentication layer."""

from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class CallerContext:
    """
    Identity and tenant scope of the user issuing a command or query.

    A caller either belongs to a firm (multi-lawyer organization) or works
    as a solo lawyer; solo lawyers never have an effective firm scope.
    """

    user_id: str
    firm_id: Optional[str] = None
    is_solo_lawyer: bool = False

    @property
    def effective_firm_id(self) -> Optional[str]:
        if self.is_solo_lawyer:
            return None
        return self.firm_id or None

    def can_access(self, firm_id: Optional[str], lawyer_id: Optional[str]) -> bool:
        """Same firm as the case, or the case's assigned lawyer."""
        is_lawyer = lawyer_id is not None and str(lawyer_id) == str(self.user_id)
        caller_firm = self.effective_firm_id
        same_firm = caller_firm is not None and firm_id is not None and str(firm_id) == str(caller_firm)
        return same_firm or is_lawyer
