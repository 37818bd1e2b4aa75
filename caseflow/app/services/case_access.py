"""Loading a case on behalf of a caller, with id, existence and ownership checks."""

from caseflow.app.core.exceptions import raise_case_access_denied, raise_case_not_found
from caseflow.app.models.domain.case import LegalCase
from caseflow.app.models.domain.tenant import CallerContext
from caseflow.app.utils.logging import get_logger
from caseflow.app.utils.validators import require_object_id

logger = get_logger(__name__)


class CaseAccessGuard:
    """
    Resolves a case id to a case the caller may act on.

    Checks run in a fixed order: malformed id, missing or soft-deleted case,
    then ownership. With ``conceal_forbidden`` set, a case the caller cannot
    access is reported exactly like a missing one.
    """

    def __init__(self, case_repository, conceal_forbidden: bool = False):
        self.case_repository = case_repository
        self.conceal_forbidden = conceal_forbidden

    async def load(
        self,
        case_id: str,
        caller: CallerContext,
        invalid_id_message: str = "Invalid case ID"
    ) -> LegalCase:
        case_id = require_object_id(case_id, message=invalid_id_message)

        case = await self.case_repository.get_case(case_id)
        if case is None or case.is_deleted:
            raise_case_not_found(case_id, caller.user_id)

        if not caller.can_access(case.firm_id, case.lawyer_id):
            logger.warning(
                "Case access denied",
                case_id=case_id,
                user_id=caller.user_id,
                firm_id=caller.effective_firm_id
            )
            if self.conceal_forbidden:
                raise_case_not_found(case_id, caller.user_id)
            raise_case_access_denied(case_id, caller.user_id)

        return case
