"""
SqlAccountCatalog -- session-backed chart of accounts.

Responsibility:
    Read-only AccountInfo lookup for the validator, plus the small set of
    account maintenance operations the ledger needs (create, deactivate,
    delete subject to the immutability listener).

Architecture position:
    Kernel > Services.  Session owned by the caller; never commits.

Failure modes:
    - IntegrityError on a duplicate (organization_id, code).
    - ImmutabilityViolationError on deleting a system or referenced account
      (raised at flush by db/immutability.py).
    - ValueError when no account type is given and the code has no
      conventional numeric prefix.
"""

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from ledger_kernel.db.types import validate_currency
from ledger_kernel.domain.dtos import AccountInfo
from ledger_kernel.exceptions import AccountNotFoundError
from ledger_kernel.logging_config import get_logger
from ledger_kernel.models.account import Account, AccountType, suggested_account_type

logger = get_logger("services.account_catalog")


class SqlAccountCatalog:
    """AccountCatalog implementation over the accounts table."""

    def __init__(self, session: Session):
        self._session = session

    def get_account(self, account_id: UUID) -> AccountInfo | None:
        model = self._session.get(Account, account_id)
        return AccountInfo.from_model(model) if model is not None else None

    def get_by_code(self, organization_id: UUID, code: str) -> AccountInfo | None:
        model = self._session.execute(
            select(Account).where(
                Account.organization_id == organization_id,
                Account.code == code,
            )
        ).scalar_one_or_none()
        return AccountInfo.from_model(model) if model is not None else None

    def list_accounts(
        self,
        organization_id: UUID,
        account_type: AccountType | None = None,
        active_only: bool = False,
    ) -> list[AccountInfo]:
        stmt = select(Account).where(Account.organization_id == organization_id)
        if account_type is not None:
            stmt = stmt.where(Account.account_type == AccountType(account_type).value)
        if active_only:
            stmt = stmt.where(Account.is_active.is_(True))
        rows = self._session.execute(stmt.order_by(Account.code)).scalars().all()
        return [AccountInfo.from_model(m) for m in rows]

    def create_account(
        self,
        organization_id: UUID,
        code: str,
        name: str,
        created_by_id: UUID,
        account_type: AccountType | None = None,
        currency: str | None = None,
        description: str | None = None,
        is_system: bool = False,
    ) -> AccountInfo:
        """
        Add an account to an organization's chart.

        When account_type is omitted it is inferred from the code
        (1xxx asset ... 6xxx+ expense).
        """
        resolved_type = account_type if account_type is not None else suggested_account_type(code)
        if resolved_type is None:
            raise ValueError(f"Cannot infer account type from code '{code}'")

        model = Account(
            organization_id=organization_id,
            code=code,
            name=name,
            account_type=AccountType(resolved_type).value,
            currency=validate_currency(currency) if currency is not None else None,
            description=description,
            is_system=is_system,
            is_active=True,
            created_by_id=created_by_id,
        )
        self._session.add(model)
        self._session.flush()

        logger.info(
            "account_created",
            extra={
                "account_id": str(model.id),
                "organization_id": str(organization_id),
                "account_code": code,
                "account_type": model.account_type,
            },
        )
        return AccountInfo.from_model(model)

    def set_active(self, account_id: UUID, is_active: bool, actor_id: UUID) -> AccountInfo:
        model = self._session.get(Account, account_id)
        if model is None:
            raise AccountNotFoundError(account_id=str(account_id))
        model.is_active = is_active
        model.updated_by_id = actor_id
        self._session.flush()
        logger.info(
            "account_activation_changed",
            extra={"account_id": str(account_id), "is_active": is_active},
        )
        return AccountInfo.from_model(model)

    def delete_account(self, account_id: UUID) -> None:
        model = self._session.get(Account, account_id)
        if model is None:
            raise AccountNotFoundError(account_id=str(account_id))
        self._session.delete(model)
        self._session.flush()
        logger.info("account_deleted", extra={"account_id": str(account_id)})
