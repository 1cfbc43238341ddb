# backend/caseflow/repositories.py
from __future__ import annotations

from contextlib import contextmanager
from datetime import datetime
from typing import Any, Iterable, Iterator, Optional

from sqlalchemy import select, update, delete, and_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, selectinload

from .domain.events import emit_case_event
from .errors import StorageError
from .models import (
    ApprovalPolicy,
    CaseEvent,
    FavoriteContractor,
    MaintenanceCase,
    Quote,
    QuoteCounterProposal,
    QuoteLineItem,
)

# -----------------------------------------------------------------------------
# Repositories
# -----------------------------------------------------------------------------
# Thin wrappers around a Session. None of them commit; services own the
# transaction boundary. The compare_and_set methods are the only way dispatch
# code mutates a case or quote status: they issue a single
#   UPDATE ... WHERE id = :id AND status = :expected [AND ...]
# and report whether a row matched, so concurrent writers race at the storage
# layer instead of in application memory.
# -----------------------------------------------------------------------------


@contextmanager
def storage_errors(what: str) -> Iterator[None]:
    try:
        yield
    except SQLAlchemyError as e:
        raise StorageError(f"storage failure during {what}: {e.__class__.__name__}") from e


class CaseRepo:
    def __init__(self, db: Session) -> None:
        self.db = db

    def get(self, case_id: str) -> Optional[MaintenanceCase]:
        with storage_errors("case lookup"):
            return self.db.get(MaintenanceCase, str(case_id))

    def get_for_org(self, org_id: str, case_id: str) -> Optional[MaintenanceCase]:
        with storage_errors("case lookup"):
            return self.db.scalar(
                select(MaintenanceCase).where(
                    MaintenanceCase.id == str(case_id),
                    MaintenanceCase.org_id == str(org_id),
                )
            )

    def compare_and_set(
        self,
        case: MaintenanceCase,
        *,
        expected_status: str,
        values: dict[str, Any],
        require_unassigned: bool = False,
    ) -> bool:
        """
        Conditional update keyed on (status, version) as last read on `case`.

        Returns False when another writer got there first; nothing is written
        in that case. On success the in-memory row is refreshed.
        """
        expected_version = int(case.version)
        conds = [
            MaintenanceCase.id == case.id,
            MaintenanceCase.status == expected_status,
            MaintenanceCase.version == expected_version,
        ]
        if require_unassigned:
            conds.append(MaintenanceCase.assigned_contractor_id.is_(None))

        payload = dict(values)
        payload["version"] = expected_version + 1
        payload.setdefault("updated_at", datetime.utcnow())

        with storage_errors("case update"):
            res = self.db.execute(
                update(MaintenanceCase)
                .where(and_(*conds))
                .values(**payload)
                .execution_options(synchronize_session=False)
            )
            if int(res.rowcount or 0) != 1:
                return False
            self.db.refresh(case)
        return True

    def list_for_org(self, org_id: str, *, status: Optional[str] = None, limit: int = 50) -> list[MaintenanceCase]:
        q = select(MaintenanceCase).where(MaintenanceCase.org_id == str(org_id))
        if status:
            q = q.where(MaintenanceCase.status == status)
        with storage_errors("case listing"):
            return list(
                self.db.scalars(
                    q.order_by(MaintenanceCase.created_at.desc(), MaintenanceCase.id).limit(limit)
                ).all()
            )

    def list_assigned_to(self, org_id: str, contractor_id: str) -> list[MaintenanceCase]:
        with storage_errors("case listing"):
            return list(
                self.db.scalars(
                    select(MaintenanceCase)
                    .where(
                        MaintenanceCase.org_id == str(org_id),
                        MaintenanceCase.assigned_contractor_id == str(contractor_id),
                    )
                    .order_by(MaintenanceCase.created_at.desc())
                ).all()
            )


class QuoteRepo:
    def __init__(self, db: Session) -> None:
        self.db = db

    def get(self, quote_id: str) -> Optional[Quote]:
        with storage_errors("quote lookup"):
            return self.db.get(Quote, str(quote_id))

    def list_for_case(self, case_id: str, *, include_archived: bool = False) -> list[Quote]:
        q = (
            select(Quote)
            .where(Quote.case_id == str(case_id))
            .options(
                selectinload(Quote.line_items),
                selectinload(Quote.counter_proposals),
                selectinload(Quote.contractor),
            )
            .order_by(Quote.created_at.desc(), Quote.id)
            .execution_options(populate_existing=True)
        )
        if not include_archived:
            q = q.where(Quote.archived_at.is_(None))
        with storage_errors("quote listing"):
            return list(self.db.scalars(q).all())

    def add(self, quote: Quote) -> Quote:
        with storage_errors("quote insert"):
            self.db.add(quote)
            self.db.flush()
        return quote

    def compare_and_set(self, quote: Quote, *, expected_statuses: Iterable[str], values: dict[str, Any]) -> bool:
        """Conditional status write; archived quotes never match."""
        payload = dict(values)
        payload.setdefault("updated_at", datetime.utcnow())
        with storage_errors("quote update"):
            res = self.db.execute(
                update(Quote)
                .where(
                    Quote.id == quote.id,
                    Quote.status.in_(list(expected_statuses)),
                    Quote.archived_at.is_(None),
                )
                .values(**payload)
                .execution_options(synchronize_session=False)
            )
            if int(res.rowcount or 0) != 1:
                return False
            self.db.refresh(quote)
        return True

    def decline_siblings(self, *, case_id: str, winner_id: str, now: datetime) -> int:
        """Every other non-archived quote on the case becomes declined."""
        with storage_errors("sibling decline"):
            res = self.db.execute(
                update(Quote)
                .where(
                    Quote.case_id == str(case_id),
                    Quote.id != str(winner_id),
                    Quote.archived_at.is_(None),
                )
                .values(status="declined", declined_at=now, updated_at=now)
                .execution_options(synchronize_session="fetch")
            )
            return int(res.rowcount or 0)

    def count_with_status(self, case_id: str, status: str) -> int:
        with storage_errors("quote count"):
            rows = self.db.scalars(
                select(Quote.id).where(
                    Quote.case_id == str(case_id),
                    Quote.status == status,
                    Quote.archived_at.is_(None),
                )
            ).all()
        return len(rows)

    def add_counter(self, cp: QuoteCounterProposal) -> QuoteCounterProposal:
        with storage_errors("counter-proposal insert"):
            self.db.add(cp)
            self.db.flush()
        return cp

    def get_counter(self, counter_id: str) -> Optional[QuoteCounterProposal]:
        with storage_errors("counter-proposal lookup"):
            return self.db.get(QuoteCounterProposal, str(counter_id))

    def resolve_counter(self, cp: QuoteCounterProposal, *, values: dict[str, Any]) -> bool:
        """Only a pending counter-proposal can be answered, and only once."""
        with storage_errors("counter-proposal update"):
            res = self.db.execute(
                update(QuoteCounterProposal)
                .where(QuoteCounterProposal.id == cp.id, QuoteCounterProposal.status == "pending")
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            if int(res.rowcount or 0) != 1:
                return False
            self.db.refresh(cp)
        return True

    def open_quote_for(self, case_id: str, contractor_id: str) -> Optional[Quote]:
        with storage_errors("quote lookup"):
            return self.db.scalar(
                select(Quote).where(
                    Quote.case_id == str(case_id),
                    Quote.contractor_id == str(contractor_id),
                    Quote.status.in_(["draft", "sent", "awaiting_response"]),
                    Quote.archived_at.is_(None),
                )
            )

    def pending_responses(self, org_id: str) -> list[Quote]:
        with storage_errors("pending quote listing"):
            return list(
                self.db.scalars(
                    select(Quote)
                    .where(
                        Quote.org_id == str(org_id),
                        Quote.has_counter_proposal.is_(True),
                        Quote.status == "awaiting_response",
                        Quote.archived_at.is_(None),
                    )
                    .options(
                        selectinload(Quote.counter_proposals),
                        selectinload(Quote.contractor),
                        selectinload(Quote.case),
                    )
                    .order_by(Quote.updated_at.desc())
                    .execution_options(populate_existing=True)
                ).all()
            )

    def list_for_contractor(self, org_id: str, contractor_id: str) -> list[Quote]:
        with storage_errors("contractor quote listing"):
            return list(
                self.db.scalars(
                    select(Quote)
                    .where(
                        Quote.org_id == str(org_id),
                        Quote.contractor_id == str(contractor_id),
                        Quote.archived_at.is_(None),
                    )
                    .options(
                        selectinload(Quote.line_items),
                        selectinload(Quote.counter_proposals),
                        selectinload(Quote.contractor),
                        selectinload(Quote.case),
                    )
                    .order_by(Quote.created_at.desc(), Quote.id)
                    .execution_options(populate_existing=True)
                ).all()
            )

    def counters_awaiting_contractor(self, org_id: str, contractor_id: str) -> list[Quote]:
        """Quotes where the landlord's counter-proposal still waits on this contractor."""
        with storage_errors("pending counter listing"):
            return list(
                self.db.scalars(
                    select(Quote)
                    .where(
                        Quote.org_id == str(org_id),
                        Quote.contractor_id == str(contractor_id),
                        Quote.has_counter_proposal.is_(True),
                        Quote.status == "awaiting_response",
                        Quote.archived_at.is_(None),
                    )
                    .options(
                        selectinload(Quote.counter_proposals),
                        selectinload(Quote.contractor),
                        selectinload(Quote.case),
                    )
                    .order_by(Quote.updated_at.desc())
                    .execution_options(populate_existing=True)
                ).all()
            )

    def get_line_item(self, quote_id: str, item_id: int) -> Optional[QuoteLineItem]:
        with storage_errors("line item lookup"):
            return self.db.scalar(
                select(QuoteLineItem).where(QuoteLineItem.id == int(item_id), QuoteLineItem.quote_id == str(quote_id))
            )

    def remove_line_item(self, quote: Quote, item: QuoteLineItem) -> None:
        with storage_errors("line item delete"):
            quote.line_items.remove(item)
            self.db.flush()

    def expirable(self, now: datetime) -> list[Quote]:
        with storage_errors("expiry scan"):
            return list(
                self.db.scalars(
                    select(Quote).where(
                        Quote.status.in_(["sent", "awaiting_response"]),
                        Quote.archived_at.is_(None),
                        Quote.expires_at.is_not(None),
                        Quote.expires_at < now,
                    )
                ).all()
            )

    def approved_awaiting_confirmation(self, cutoff: datetime) -> list[tuple[Quote, MaintenanceCase]]:
        with storage_errors("unconfirmed job scan"):
            rows = self.db.execute(
                select(Quote, MaintenanceCase)
                .join(MaintenanceCase, MaintenanceCase.id == Quote.case_id)
                .where(
                    Quote.status == "approved",
                    Quote.approved_at.is_not(None),
                    Quote.approved_at <= cutoff,
                    MaintenanceCase.status == "In Review",
                )
                .order_by(Quote.approved_at)
            ).all()
        return [(q, c) for q, c in rows]


class PolicyRepo:
    def __init__(self, db: Session) -> None:
        self.db = db

    def get_active(self, org_id: str) -> Optional[ApprovalPolicy]:
        with storage_errors("policy lookup"):
            return self.db.scalar(
                select(ApprovalPolicy)
                .where(ApprovalPolicy.org_id == str(org_id), ApprovalPolicy.is_active.is_(True))
                .order_by(ApprovalPolicy.updated_at.desc(), ApprovalPolicy.created_at.desc())
                .limit(1)
            )

    def deactivate_all(self, org_id: str) -> int:
        with storage_errors("policy deactivate"):
            res = self.db.execute(
                update(ApprovalPolicy)
                .where(ApprovalPolicy.org_id == str(org_id), ApprovalPolicy.is_active.is_(True))
                .values(is_active=False, updated_at=datetime.utcnow())
                .execution_options(synchronize_session="fetch")
            )
            return int(res.rowcount or 0)

    def add(self, policy: ApprovalPolicy) -> ApprovalPolicy:
        with storage_errors("policy insert"):
            self.db.add(policy)
            self.db.flush()
        return policy

    def favorite_user_ids(self, org_id: str) -> set[str]:
        with storage_errors("favorites lookup"):
            rows = self.db.scalars(
                select(FavoriteContractor.contractor_user_id).where(FavoriteContractor.org_id == str(org_id))
            ).all()
        return {str(r) for r in rows}

    def is_favorite(self, org_id: str, user_id: Optional[str]) -> bool:
        if not user_id:
            return False
        with storage_errors("favorite lookup"):
            row = self.db.scalar(
                select(FavoriteContractor.id).where(
                    FavoriteContractor.org_id == str(org_id),
                    FavoriteContractor.contractor_user_id == str(user_id),
                )
            )
        return row is not None

    def add_favorite(self, org_id: str, user_id: str) -> bool:
        if self.is_favorite(org_id, user_id):
            return False
        with storage_errors("favorite insert"):
            self.db.add(FavoriteContractor(org_id=str(org_id), contractor_user_id=str(user_id)))
            self.db.flush()
        return True

    def remove_favorite(self, org_id: str, user_id: str) -> bool:
        with storage_errors("favorite delete"):
            res = self.db.execute(
                delete(FavoriteContractor).where(
                    FavoriteContractor.org_id == str(org_id),
                    FavoriteContractor.contractor_user_id == str(user_id),
                )
            )
        return int(res.rowcount or 0) > 0


class EventLog:
    """Append-only CaseEvent access. There is deliberately no update/delete."""

    def __init__(self, db: Session) -> None:
        self.db = db

    def append(
        self,
        *,
        org_id: str,
        case_id: str,
        event_type: str,
        description: str,
        actor_user_id: Optional[str] = None,
        metadata: Optional[dict[str, Any]] = None,
    ) -> CaseEvent:
        with storage_errors("case event insert"):
            return emit_case_event(
                self.db,
                org_id=org_id,
                case_id=case_id,
                event_type=event_type,
                description=description,
                actor_user_id=actor_user_id,
                metadata=metadata,
            )

    def list_for_case(self, case_id: str) -> list[CaseEvent]:
        with storage_errors("case event listing"):
            return list(
                self.db.scalars(
                    select(CaseEvent)
                    .where(CaseEvent.case_id == str(case_id))
                    .order_by(CaseEvent.created_at, CaseEvent.id)
                ).all()
            )
