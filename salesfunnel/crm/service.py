from __future__ import annotations

import logging
import time
import uuid
from dataclasses import dataclass
from datetime import timedelta
from typing import Any

from opentelemetry import trace
from sqlalchemy import Select, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from salesfunnel import audit, events
from salesfunnel.business.errors import (
    CapacityExceededError,
    ConflictError,
    ForbiddenError,
    FunnelError,
    HasDependentsError,
    InvalidTransitionError,
    LossReasonRequiredError,
    NotFoundError,
    ValidationError,
)
from salesfunnel.core.database import run_in_transaction
from salesfunnel.core.rbac import ROLE_ADMIN, ROLE_SALES_MANAGER
from salesfunnel.crm.models import (
    CUSTOMER_STATUS_PRIVATE,
    CUSTOMER_STATUS_PUBLIC_POOL,
    CRMContact,
    CRMCustomer,
    CRMFollowUp,
    CRMOpportunity,
    utcnow,
)
from salesfunnel.crm.repositories import CustomerRepository, OpportunityRepository
from salesfunnel.crm.schemas import (
    BatchFailure,
    BatchResult,
    CustomerCreate,
    CustomerRead,
    CustomerRelationsRead,
    CustomerUpdate,
    FollowUpCreate,
    FollowUpRead,
    InactiveReleaseSummary,
    OpportunityCreate,
    OpportunityRead,
    OpportunityUpdate,
)
from salesfunnel.crm.settings import resolve_pool_policy
from salesfunnel.metrics import observe_customer_claim, observe_job
from salesfunnel.otel import funnel_span
from salesfunnel.platform.security.context import SYSTEM_ACTOR, Actor


logger = logging.getLogger("salesfunnel.crm")
tracer = trace.get_tracer("salesfunnel.crm")


STAGE_PROSPECTING = "PROSPECTING"
STAGE_CLOSED_WON = "CLOSED_WON"
STAGE_CLOSED_LOST = "CLOSED_LOST"

ACTIVE_STAGES = ("PROSPECTING", "QUALIFICATION", "PROPOSAL", "NEGOTIATION")
CLOSED_STAGES = (STAGE_CLOSED_WON, STAGE_CLOSED_LOST)

STAGE_PROBABILITY: dict[str, int] = {
    "PROSPECTING": 10,
    "QUALIFICATION": 25,
    "PROPOSAL": 50,
    "NEGOTIATION": 75,
    "CLOSED_WON": 100,
    "CLOSED_LOST": 0,
}

VALID_STAGE_TRANSITIONS: dict[str, set[str]] = {
    **{stage: (set(ACTIVE_STAGES) - {stage}) | set(CLOSED_STAGES) for stage in ACTIVE_STAGES},
    STAGE_CLOSED_WON: set(),
    STAGE_CLOSED_LOST: set(),
}

ASSIGNING_ROLES = {ROLE_ADMIN, ROLE_SALES_MANAGER}
CUSTOMER_REQUIRED_FIELDS = frozenset({"company_name"})
OPPORTUNITY_REQUIRED_FIELDS = frozenset({"name", "amount"})


def _customer_snapshot(customer: CRMCustomer) -> dict[str, Any]:
    return CustomerRead.model_validate(customer).model_dump(mode="json")


def _opportunity_snapshot(opportunity: CRMOpportunity) -> dict[str, Any]:
    return OpportunityRead.model_validate(opportunity).model_dump(mode="json")


def _ensure_required(changes: dict[str, Any], required: frozenset[str]) -> None:
    cleared = sorted(key for key in required.intersection(changes) if changes[key] is None)
    if cleared:
        raise ValidationError("required fields cannot be cleared", details={"fields": cleared})


@dataclass(slots=True)
class CustomerPoolService:
    repository: CustomerRepository = CustomerRepository()

    def create_customer(self, session: Session, actor: Actor, dto: CustomerCreate) -> CustomerRead:
        owner_user_id = dto.owner_user_id
        if owner_user_id is not None:
            self._ensure_can_assign(actor, owner_user_id)

        def work() -> uuid.UUID:
            if owner_user_id is not None:
                self._check_capacity(session, owner_user_id, None)
            customer = CRMCustomer(
                company_name=dto.company_name,
                industry=dto.industry,
                region=dto.region,
                source=dto.source,
                status=CUSTOMER_STATUS_PRIVATE if owner_user_id else CUSTOMER_STATUS_PUBLIC_POOL,
                owner_user_id=owner_user_id,
            )
            session.add(customer)
            session.flush()
            if dto.primary_contact is not None:
                session.add(
                    CRMContact(
                        customer_id=customer.id,
                        is_primary=True,
                        **dto.primary_contact.model_dump(mode="python"),
                    )
                )
            return customer.id

        try:
            customer_id = run_in_transaction(session, work, operation="crm.customer.create")
        except IntegrityError:
            raise ConflictError("customer already exists", details={"company_name": dto.company_name})

        customer = self._get_customer(session, customer_id)
        after = _customer_snapshot(customer)
        audit.record(actor.user_id, self.repository.resource, str(customer.id), "create", None, after, actor.correlation_id)
        events.emit("crm.customer.created", actor.user_id, {"customer_id": str(customer.id), "status": customer.status})
        return CustomerRead.model_validate(customer)

    def get_customer(self, session: Session, customer_id: uuid.UUID) -> CustomerRead:
        return CustomerRead.model_validate(self._get_customer(session, customer_id))

    def list_customers(
        self,
        session: Session,
        *,
        status: str | None = None,
        owner_user_id: str | None = None,
        limit: int = 100,
        offset: int = 0,
    ) -> list[CustomerRead]:
        stmt: Select[tuple[CRMCustomer]] = select(CRMCustomer)
        if status is not None:
            stmt = stmt.where(CRMCustomer.status == status)
        if owner_user_id is not None:
            stmt = stmt.where(CRMCustomer.owner_user_id == owner_user_id)
        rows = session.scalars(stmt.order_by(CRMCustomer.created_at.desc()).limit(limit).offset(offset)).all()
        return [CustomerRead.model_validate(row) for row in rows]

    def update_customer(self, session: Session, actor: Actor, customer_id: uuid.UUID, dto: CustomerUpdate) -> CustomerRead:
        customer = self._get_customer(session, customer_id)
        if customer.status == CUSTOMER_STATUS_PUBLIC_POOL and not actor.is_admin:
            raise ForbiddenError("only an administrator may edit a public pool customer")
        if not actor.owns_or_admin(customer.owner_user_id) and customer.status == CUSTOMER_STATUS_PRIVATE:
            raise ForbiddenError("customer belongs to another owner")

        changes = dto.model_dump(mode="python", exclude_unset=True)
        _ensure_required(changes, CUSTOMER_REQUIRED_FIELDS)
        if not changes:
            return CustomerRead.model_validate(customer)

        before = _customer_snapshot(customer)
        for key, value in changes.items():
            setattr(customer, key, value)
        customer.row_version += 1
        try:
            session.commit()
        except IntegrityError:
            session.rollback()
            raise ConflictError("customer already exists", details={"company_name": changes.get("company_name")})
        session.refresh(customer)

        audit.record(actor.user_id, self.repository.resource, str(customer.id), "update", before, _customer_snapshot(customer), actor.correlation_id)
        return CustomerRead.model_validate(customer)

    def record_follow_up(self, session: Session, actor: Actor, customer_id: uuid.UUID, dto: FollowUpCreate) -> FollowUpRead:
        customer = self._get_customer(session, customer_id)
        if customer.status == CUSTOMER_STATUS_PRIVATE and not actor.owns_or_admin(customer.owner_user_id):
            raise ForbiddenError("customer belongs to another owner")
        if dto.opportunity_id is not None:
            opportunity = session.get(CRMOpportunity, dto.opportunity_id)
            if opportunity is None or opportunity.customer_id != customer.id:
                raise ValidationError(
                    "opportunity does not belong to customer",
                    details={"opportunity_id": str(dto.opportunity_id)},
                )

        now = utcnow()
        follow_up = CRMFollowUp(
            customer_id=customer.id,
            opportunity_id=dto.opportunity_id,
            user_id=actor.user_id,
            follow_up_type=dto.follow_up_type,
            content=dto.content,
            created_at=now,
        )
        session.add(follow_up)
        self.repository.touch_last_contact(session, customer.id, now)
        session.commit()
        session.refresh(follow_up)
        return FollowUpRead.model_validate(follow_up)

    def claim(
        self,
        session: Session,
        actor: Actor,
        customer_id: uuid.UUID,
        owner_user_id: str | None = None,
        *,
        claim_limit: int | None = None,
    ) -> CustomerRead:
        """Move a PUBLIC_POOL customer into ``owner_user_id``'s private pool.

        The capacity check and the flip share one transaction that is serialized per owner
        through the owner slot row. The flip only applies while the customer is still public,
        so a lost race surfaces as ``ConflictError`` rather than a reassignment.
        """
        owner = owner_user_id or actor.user_id
        self._ensure_can_assign(actor, owner)

        def work() -> None:
            with funnel_span(tracer, "crm.customer.claim", customer_id=customer_id, owner_user_id=owner):
                self._check_capacity(session, owner, claim_limit)
                if self.repository.claim_if_public(session, customer_id, owner):
                    return
                current = session.get(CRMCustomer, customer_id, populate_existing=True)
                if current is None:
                    raise NotFoundError("customer not found", details={"customer_id": str(customer_id)})
                raise ConflictError(
                    "customer is already owned",
                    details={"customer_id": str(customer_id), "owner_user_id": current.owner_user_id},
                )

        try:
            run_in_transaction(session, work, operation="crm.customer.claim")
        except FunnelError as exc:
            observe_customer_claim(exc.code)
            logger.info(
                "crm.customer.claim_refused",
                extra={"customer_id": str(customer_id), "owner_user_id": owner, "outcome": exc.code},
            )
            raise

        observe_customer_claim("claimed")
        customer = self._get_customer(session, customer_id)
        logger.info("crm.customer.claimed", extra={"customer_id": str(customer_id), "owner_user_id": owner, "outcome": "claimed"})
        audit.record(
            actor.user_id,
            self.repository.resource,
            str(customer_id),
            "claim",
            {"status": CUSTOMER_STATUS_PUBLIC_POOL, "owner_user_id": None},
            {"status": customer.status, "owner_user_id": customer.owner_user_id},
            actor.correlation_id,
        )
        events.emit("crm.customer.claimed", actor.user_id, {"customer_id": str(customer_id), "owner_user_id": owner})
        return CustomerRead.model_validate(customer)

    def release(self, session: Session, actor: Actor, customer_id: uuid.UUID) -> CustomerRead:
        return self._release(session, actor, customer_id, expected_owner=None)

    def delete(self, session: Session, actor: Actor, customer_id: uuid.UUID, *, force: bool = False) -> None:
        def work() -> dict[str, Any]:
            customer = self._load_for_update(session, customer_id)
            if not actor.owns_or_admin(customer.owner_user_id):
                raise ForbiddenError("only the owner or an administrator may delete this customer")
            if not force:
                dependents = self.repository.count_dependents(session, customer_id)
                if any(dependents.values()):
                    raise HasDependentsError("customer", dependents)
            snapshot = _customer_snapshot(customer)
            session.expunge(customer)
            if self.repository.delete_with_children(session, customer_id, cascade=force) != 1:
                raise ConflictError("customer changed concurrently", details={"customer_id": str(customer_id)})
            return snapshot

        try:
            before = run_in_transaction(session, work, operation="crm.customer.delete")
        except IntegrityError:
            # a dependent was inserted between the count and the delete
            raise HasDependentsError("customer", self.repository.count_dependents(session, customer_id))

        logger.info("crm.customer.deleted", extra={"customer_id": str(customer_id), "outcome": "forced" if force else "deleted"})
        audit.record(actor.user_id, self.repository.resource, str(customer_id), "delete", before, None, actor.correlation_id)
        events.emit("crm.customer.deleted", actor.user_id, {"customer_id": str(customer_id), "force": force})

    def check_relations(self, session: Session, customer_id: uuid.UUID) -> CustomerRelationsRead:
        self._get_customer(session, customer_id)
        return CustomerRelationsRead(**self.repository.count_dependents(session, customer_id))

    def batch_claim(
        self,
        session: Session,
        actor: Actor,
        customer_ids: list[uuid.UUID],
        owner_user_id: str | None = None,
        *,
        claim_limit: int | None = None,
    ) -> BatchResult:
        owner = owner_user_id or actor.user_id
        self._ensure_can_assign(actor, owner)

        requested = list(dict.fromkeys(customer_ids))
        limit = claim_limit if claim_limit is not None else resolve_pool_policy(session).claim_limit
        available = max(limit - self.repository.count_private(session, owner), 0)
        session.commit()

        result = BatchResult()
        for customer_id in requested[:available]:
            try:
                self.claim(session, actor, customer_id, owner, claim_limit=claim_limit)
            except FunnelError as exc:
                result.add_failure(exc.to_item(customer_id))
            else:
                result.succeeded.append(customer_id)

        for customer_id in requested[available:]:
            result.add_failure(
                {"id": customer_id, "code": CapacityExceededError.code, "message": f"claim capacity of {limit} exhausted"}
            )
        return result

    def batch_release(self, session: Session, actor: Actor, customer_ids: list[uuid.UUID]) -> BatchResult:
        result = BatchResult()
        for customer_id in dict.fromkeys(customer_ids):
            try:
                self.release(session, actor, customer_id)
            except FunnelError as exc:
                result.add_failure(exc.to_item(customer_id))
            else:
                result.succeeded.append(customer_id)
        return result

    def batch_delete(self, session: Session, actor: Actor, customer_ids: list[uuid.UUID], *, force: bool = False) -> BatchResult:
        result = BatchResult()
        for customer_id in dict.fromkeys(customer_ids):
            try:
                self.delete(session, actor, customer_id, force=force)
            except FunnelError as exc:
                result.add_failure(exc.to_item(customer_id))
            else:
                result.succeeded.append(customer_id)
        return result

    def find_inactive(self, session: Session, threshold_days: int | None = None) -> list[CustomerRead]:
        days = threshold_days if threshold_days is not None else resolve_pool_policy(session).inactive_days
        if days < 0:
            raise ValidationError("threshold_days must not be negative", details={"threshold_days": days})

        cutoff = utcnow() - timedelta(days=days)
        rows = session.scalars(
            select(CRMCustomer)
            .where(
                CRMCustomer.status == CUSTOMER_STATUS_PRIVATE,
                or_(CRMCustomer.last_contact_at.is_(None), CRMCustomer.last_contact_at < cutoff),
            )
            .order_by(CRMCustomer.created_at.asc())
        ).all()
        return [CustomerRead.model_validate(row) for row in rows]

    def release_inactive(self, session: Session, threshold_days: int | None = None) -> InactiveReleaseSummary:
        """Job body for the scheduler: return stale private customers to the public pool."""
        job_type = "crm.customer.release_inactive"
        started = time.perf_counter()
        days = threshold_days if threshold_days is not None else resolve_pool_policy(session).inactive_days
        stale = self.find_inactive(session, days)
        session.commit()

        summary = InactiveReleaseSummary(threshold_days=days, found=len(stale))
        with funnel_span(tracer, job_type, threshold_days=days, found=len(stale)):
            for customer in stale:
                try:
                    self._release(session, SYSTEM_ACTOR, customer.id, expected_owner=customer.owner_user_id)
                except FunnelError as exc:
                    summary.failed.append(BatchFailure.model_validate(exc.to_item(customer.id)))
                    logger.warning(
                        "crm.customer.auto_release_failed",
                        extra={"customer_id": str(customer.id), "job_type": job_type, "error": exc.message},
                    )
                else:
                    summary.released.append(customer.id)

        status = "succeeded" if not summary.failed else "partial"
        observe_job(job_type, status, time.perf_counter() - started)
        logger.info(
            "crm.job.completed",
            extra={"job_type": job_type, "status": status, "count": len(summary.released)},
        )
        return summary

    def _release(self, session: Session, actor: Actor, customer_id: uuid.UUID, *, expected_owner: str | None) -> CustomerRead:
        def work() -> str | None:
            customer = self._load_for_update(session, customer_id)
            if customer.status == CUSTOMER_STATUS_PUBLIC_POOL:
                if not actor.is_admin:
                    raise ForbiddenError("only an administrator may release a public pool customer")
                return None
            if not actor.owns_or_admin(customer.owner_user_id):
                raise ForbiddenError("only the owner or an administrator may release this customer")

            previous_owner = customer.owner_user_id
            guard = expected_owner if expected_owner is not None else (None if actor.is_admin else actor.user_id)
            if not self.repository.release_if_owned(session, customer_id, guard):
                raise ConflictError("customer changed concurrently", details={"customer_id": str(customer_id)})
            return previous_owner

        previous_owner = run_in_transaction(session, work, operation="crm.customer.release")
        customer = self._get_customer(session, customer_id)
        if previous_owner is None:
            return CustomerRead.model_validate(customer)

        logger.info("crm.customer.released", extra={"customer_id": str(customer_id), "owner_user_id": previous_owner})
        audit.record(
            actor.user_id,
            self.repository.resource,
            str(customer_id),
            "release",
            {"status": CUSTOMER_STATUS_PRIVATE, "owner_user_id": previous_owner},
            {"status": customer.status, "owner_user_id": None},
            actor.correlation_id,
        )
        events.emit(
            "crm.customer.released",
            actor.user_id,
            {"customer_id": str(customer_id), "previous_owner_user_id": previous_owner},
        )
        return CustomerRead.model_validate(customer)

    def _check_capacity(self, session: Session, owner_user_id: str, claim_limit: int | None) -> None:
        limit = claim_limit if claim_limit is not None else resolve_pool_policy(session).claim_limit
        self.repository.lock_owner_slot(session, owner_user_id)
        count = self.repository.count_private(session, owner_user_id)
        if count >= limit:
            raise CapacityExceededError(owner_user_id, count, limit)

    @staticmethod
    def _ensure_can_assign(actor: Actor, owner_user_id: str) -> None:
        if owner_user_id != actor.user_id and actor.role not in ASSIGNING_ROLES:
            raise ForbiddenError("only managers may assign customers to another owner")

    @staticmethod
    def _load_for_update(session: Session, customer_id: uuid.UUID) -> CRMCustomer:
        customer = session.scalar(
            select(CRMCustomer).where(CRMCustomer.id == customer_id).with_for_update().execution_options(populate_existing=True)
        )
        if customer is None:
            raise NotFoundError("customer not found", details={"customer_id": str(customer_id)})
        return customer

    @staticmethod
    def _get_customer(session: Session, customer_id: uuid.UUID) -> CRMCustomer:
        customer = session.get(CRMCustomer, customer_id)
        if customer is None:
            raise NotFoundError("customer not found", details={"customer_id": str(customer_id)})
        return customer


@dataclass(slots=True)
class OpportunityService:
    repository: OpportunityRepository = OpportunityRepository()

    def create_opportunity(self, session: Session, actor: Actor, dto: OpportunityCreate) -> OpportunityRead:
        if session.get(CRMCustomer, dto.customer_id) is None:
            raise NotFoundError("customer not found", details={"customer_id": str(dto.customer_id)})

        opportunity = CRMOpportunity(
            customer_id=dto.customer_id,
            name=dto.name,
            amount=dto.amount,
            expected_close_date=dto.expected_close_date,
            stage=STAGE_PROSPECTING,
            probability=STAGE_PROBABILITY[STAGE_PROSPECTING],
            owner_user_id=actor.user_id,
        )
        session.add(opportunity)
        session.commit()
        session.refresh(opportunity)

        audit.record(actor.user_id, self.repository.resource, str(opportunity.id), "create", None, _opportunity_snapshot(opportunity), actor.correlation_id)
        events.emit(
            "crm.opportunity.created",
            actor.user_id,
            {"opportunity_id": str(opportunity.id), "customer_id": str(opportunity.customer_id)},
        )
        return OpportunityRead.model_validate(opportunity)

    def get_opportunity(self, session: Session, opportunity_id: uuid.UUID) -> OpportunityRead:
        return OpportunityRead.model_validate(self._get_opportunity(session, opportunity_id))

    def list_opportunities(
        self,
        session: Session,
        *,
        customer_id: uuid.UUID | None = None,
        owner_user_id: str | None = None,
        stage: str | None = None,
    ) -> list[OpportunityRead]:
        stmt: Select[tuple[CRMOpportunity]] = select(CRMOpportunity)
        if customer_id is not None:
            stmt = stmt.where(CRMOpportunity.customer_id == customer_id)
        if owner_user_id is not None:
            stmt = stmt.where(CRMOpportunity.owner_user_id == owner_user_id)
        if stage is not None:
            stmt = stmt.where(CRMOpportunity.stage == stage)
        rows = session.scalars(stmt.order_by(CRMOpportunity.created_at.desc())).all()
        return [OpportunityRead.model_validate(row) for row in rows]

    def update_opportunity(
        self,
        session: Session,
        actor: Actor,
        opportunity_id: uuid.UUID,
        dto: OpportunityUpdate,
    ) -> OpportunityRead:
        opportunity = self._get_opportunity(session, opportunity_id)
        if not actor.owns_or_admin(opportunity.owner_user_id):
            raise ForbiddenError("only the owner or an administrator may edit this opportunity")
        if opportunity.stage in CLOSED_STAGES:
            raise ConflictError("closed opportunities are immutable", details={"stage": opportunity.stage})

        changes = dto.model_dump(mode="python", exclude_unset=True)
        _ensure_required(changes, OPPORTUNITY_REQUIRED_FIELDS)

        before = _opportunity_snapshot(opportunity)
        for key, value in changes.items():
            setattr(opportunity, key, value)
        opportunity.row_version += 1
        session.commit()
        session.refresh(opportunity)

        audit.record(actor.user_id, self.repository.resource, str(opportunity.id), "update", before, _opportunity_snapshot(opportunity), actor.correlation_id)
        return OpportunityRead.model_validate(opportunity)

    def transition_stage(
        self,
        session: Session,
        actor: Actor,
        opportunity_id: uuid.UUID,
        target_stage: str,
        loss_reason: str | None = None,
    ) -> OpportunityRead:
        target = target_stage.strip().upper()
        if target not in STAGE_PROBABILITY:
            raise ValidationError("unknown opportunity stage", details={"stage": target_stage})
        reason = (loss_reason or "").strip()
        if target == STAGE_CLOSED_LOST and not reason:
            raise LossReasonRequiredError()

        opportunity = self._get_opportunity(session, opportunity_id)
        if not actor.owns_or_admin(opportunity.owner_user_id):
            raise ForbiddenError("only the owner or an administrator may change this opportunity's stage")

        before = _opportunity_snapshot(opportunity)
        current = opportunity.stage
        try:
            self.apply_transition(session, opportunity, target, reason or None)
            session.commit()
        except Exception:
            session.rollback()
            raise
        session.refresh(opportunity)

        after = _opportunity_snapshot(opportunity)
        logger.info(
            "crm.opportunity.stage_changed",
            extra={"opportunity_id": str(opportunity.id), "from_status": current, "to_status": target},
        )
        audit.record(actor.user_id, self.repository.resource, str(opportunity.id), "stage_change", before, after, actor.correlation_id)
        events.emit(
            "crm.opportunity.stage_changed",
            actor.user_id,
            {"opportunity_id": str(opportunity.id), "from_stage": current, "to_stage": target},
        )
        return OpportunityRead.model_validate(opportunity)

    def apply_transition(
        self,
        session: Session,
        opportunity: CRMOpportunity,
        target: str,
        loss_reason: str | None = None,
    ) -> None:
        """Move ``opportunity`` to ``target`` inside the caller's transaction; no commit."""
        current = opportunity.stage
        if target not in VALID_STAGE_TRANSITIONS.get(current, set()):
            raise InvalidTransitionError("opportunity", current, target)
        if target == STAGE_CLOSED_LOST and not loss_reason:
            raise LossReasonRequiredError()

        now = utcnow()
        result = session.execute(
            update(CRMOpportunity)
            .where(CRMOpportunity.id == opportunity.id, CRMOpportunity.stage == current)
            .values(
                stage=target,
                probability=STAGE_PROBABILITY[target],
                loss_reason=loss_reason if target == STAGE_CLOSED_LOST else None,
                closed_at=now if target in CLOSED_STAGES else None,
                updated_at=now,
                row_version=CRMOpportunity.row_version + 1,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise ConflictError(
                "opportunity stage changed concurrently",
                details={"opportunity_id": str(opportunity.id), "expected_stage": current},
            )
        session.expire(opportunity)

    def delete_opportunity(self, session: Session, actor: Actor, opportunity_id: uuid.UUID) -> None:
        opportunity = self._get_opportunity(session, opportunity_id)
        if not actor.owns_or_admin(opportunity.owner_user_id):
            raise ForbiddenError("only the owner or an administrator may delete this opportunity")
        dependents = self.repository.count_dependents(session, opportunity_id)
        if any(dependents.values()):
            raise HasDependentsError("opportunity", dependents)

        before = _opportunity_snapshot(opportunity)
        session.delete(opportunity)
        try:
            session.commit()
        except IntegrityError:
            session.rollback()
            raise HasDependentsError("opportunity", self.repository.count_dependents(session, opportunity_id))
        audit.record(actor.user_id, self.repository.resource, str(opportunity_id), "delete", before, None, actor.correlation_id)

    @staticmethod
    def _get_opportunity(session: Session, opportunity_id: uuid.UUID) -> CRMOpportunity:
        opportunity = session.get(CRMOpportunity, opportunity_id)
        if opportunity is None:
            raise NotFoundError("opportunity not found", details={"opportunity_id": str(opportunity_id)})
        return opportunity


customer_pool_service = CustomerPoolService()
opportunity_service = OpportunityService()
