"""
AccountLookupService -- resolve account ids and card numbers to accounts.

Responsibility:
    The only path by which posting code reaches Account rows.  Lookups can
    take the account row lock (``for_update=True``) so that validation and
    posting see the same balance.

Failure modes:
    - AccountNotFoundError: no account row for the id.
    - CardNotFoundError: no active cross reference for the card number.
"""

from sqlalchemy import select

from ledger_kernel.domain.dtos import AccountResolution, AccountSnapshot
from ledger_kernel.exceptions import AccountNotFoundError, CardNotFoundError
from ledger_kernel.models.account import Account, CardXref
from ledger_kernel.services.base import BaseService


class AccountLookupService(BaseService):
    """Account and card cross-reference lookups."""

    def get_account(self, account_id: str, for_update: bool = False) -> Account | None:
        stmt = select(Account).where(Account.id == account_id)
        if for_update:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        return self.session.execute(stmt).scalar_one_or_none()

    def find_account(self, account_id: str, for_update: bool = False) -> Account:
        """
        Return the account or raise AccountNotFoundError.

        Args:
            account_id: 11-digit account identifier.
            for_update: Take the row lock for the rest of the transaction.
        """
        account = self.get_account(account_id, for_update=for_update)
        if account is None:
            raise AccountNotFoundError(account_id)
        return account

    def get_card(self, card_number: str) -> CardXref | None:
        return self.session.execute(
            select(CardXref).where(
                CardXref.card_number == card_number,
                CardXref.is_active.is_(True),
            )
        ).scalar_one_or_none()

    def find_account_by_card(self, card_number: str, for_update: bool = False) -> Account:
        xref = self.get_card(card_number)
        if xref is None:
            raise CardNotFoundError(card_number)
        return self.find_account(xref.account_id, for_update=for_update)

    def find_card_for_account(self, account_id: str) -> CardXref | None:
        """First active card of the account, ordered by card number."""
        return self.session.execute(
            select(CardXref)
            .where(
                CardXref.account_id == account_id,
                CardXref.is_active.is_(True),
            )
            .order_by(CardXref.card_number)
            .limit(1)
        ).scalar_one_or_none()

    def resolve_card(self, card_number: str | None, for_update: bool = False) -> AccountResolution:
        """
        Resolve a card number for the validator.  Never raises for a miss.

        Returns:
            AccountResolution distinguishing "card not found" from
            "card found, account missing".
        """
        if not card_number:
            return AccountResolution.card_not_found()
        xref = self.get_card(card_number)
        if xref is None:
            return AccountResolution.card_not_found()
        account = self.get_account(xref.account_id, for_update=for_update)
        return AccountResolution(
            card_found=True,
            account_id=xref.account_id,
            account=AccountSnapshot.from_model(account) if account is not None else None,
        )
