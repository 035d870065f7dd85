"""
Registration Saga: Consistent (Identity, Profile) Creation

Account creation spans two independent remote stores with no shared
transaction boundary:
T1: Create identity → identity provider      (compensate: destroy identity)
T2: Insert profile  → profile store, id = identity id

Each step runs under the registration retry policy (transient faults
only). When a step fails, completed steps are compensated in reverse
order. Compensation is best-effort: a failed rollback is logged as a
ConsistencyWarning and the caller still receives the original step error.

Not atomic: a failed T2 followed by a failed compensation leaves an
identity without a profile. No reconciliation sweep exists; the session
layer treats a missing profile as a degraded-but-valid state.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Any, Generic, Optional, TypeVar
from uuid import uuid4

from authsession.core.errors import (
    AuthSessionError,
    ConsistencyWarning,
    UnexpectedError,
)
from authsession.core.types import (
    Credential,
    Err,
    Identity,
    Ok,
    Profile,
    Result,
    Timestamp,
)
from authsession.gateways.protocols import IdentityGateway, ProfileStore
from authsession.observability.logging import log_context
from authsession.reliability.retry import RetryPolicy, retry_with_backoff

logger = logging.getLogger(__name__)


class SagaState(Enum):
    """Saga execution state."""
    PENDING = auto()
    RUNNING = auto()
    COMPLETED = auto()
    COMPENSATING = auto()
    ROLLED_BACK = auto()


T = TypeVar("T")  # Step result type


@dataclass
class StepResult(Generic[T]):
    """Result of a saga step execution."""
    step_name: str
    success: bool
    result: Optional[T] = None
    error: Optional[AuthSessionError] = None


class SagaStep(ABC, Generic[T]):
    """
    Abstract saga step with execute and compensate.

    Subclass this to implement specific operations.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Step identifier for logging."""

    @abstractmethod
    async def execute(self, context: dict[str, Any]) -> Result[T, AuthSessionError]:
        """
        Execute forward operation (one attempt).

        Args:
            context: Shared saga context (mutable)
        """

    async def compensate(self, context: dict[str, Any]) -> Result[None, AuthSessionError]:
        """
        Undo this step after a later step failed.

        Default: nothing to undo.
        """
        return Ok(None)


@dataclass
class SagaExecution:
    """Saga execution record."""
    saga_id: str
    state: SagaState
    context: dict[str, Any]
    step_results: list[StepResult] = field(default_factory=list)
    started_at: Timestamp = field(default_factory=Timestamp.now)
    completed_at: Optional[Timestamp] = None
    warnings: list[ConsistencyWarning] = field(default_factory=list)


class SagaCoordinator:
    """
    Runs saga steps in order with retry and reverse-order compensation.

    Usage:
        coordinator = SagaCoordinator(RetryPolicy.for_registration())
        coordinator.add_step(CreateIdentityStep(gateway))
        coordinator.add_step(InsertProfileStep(store))

        result = await coordinator.execute(initial_context)
    """

    __slots__ = ("_steps", "_policy")

    def __init__(self, policy: RetryPolicy) -> None:
        self._steps: list[SagaStep] = []
        self._policy = policy

    def add_step(self, step: SagaStep) -> SagaCoordinator:
        """Add step to saga (fluent API)."""
        self._steps.append(step)
        return self

    async def execute(
        self,
        context: Optional[dict[str, Any]] = None,
    ) -> Result[SagaExecution, AuthSessionError]:
        """
        Execute saga with compensation on failure.

        Returns:
            Ok(execution) when every step succeeded; otherwise Err with the
            failing step's own error (never a compensation error)
        """
        execution = SagaExecution(
            saga_id=str(uuid4()),
            state=SagaState.RUNNING,
            context=context if context is not None else {},
        )

        with log_context(saga_id=execution.saga_id):
            logger.info(f"Starting saga {execution.saga_id} with {len(self._steps)} steps")
            completed: list[SagaStep] = []

            for step in self._steps:
                result = await retry_with_backoff(
                    lambda step=step: step.execute(execution.context),
                    self._policy,
                    operation=step.name,
                )

                execution.step_results.append(StepResult(
                    step_name=step.name,
                    success=result.is_ok(),
                    result=result.unwrap() if result.is_ok() else None,
                    error=result.error if result.is_err() else None,
                ))

                if result.is_ok():
                    completed.append(step)
                    logger.debug(f"Saga step '{step.name}' completed")
                    continue

                logger.warning(f"Saga step '{step.name}' failed: {result.error}")
                if completed:
                    execution.state = SagaState.COMPENSATING
                    await self._compensate(completed, execution)
                execution.state = SagaState.ROLLED_BACK
                execution.completed_at = Timestamp.now()
                return Err(result.error)

            execution.state = SagaState.COMPLETED
            execution.completed_at = Timestamp.now()
            logger.info(f"Saga {execution.saga_id} completed")
            return Ok(execution)

    async def _compensate(
        self,
        completed_steps: list[SagaStep],
        execution: SagaExecution,
    ) -> None:
        """Run compensating actions in reverse order, once each."""
        for step in reversed(completed_steps):
            try:
                result = await step.compensate(execution.context)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                result = Err(UnexpectedError.wrap(f"compensate:{step.name}", e))

            if result.is_ok():
                logger.info(f"Compensated step '{step.name}'")
                continue

            warning = ConsistencyWarning.orphaned_identity(
                identity_id=str(execution.context.get("identity_id", "")),
                saga_id=execution.saga_id,
                cause=result.error,
            )
            execution.warnings.append(warning)
            logger.error(
                f"Compensation failed for '{step.name}': {result.error}",
                extra={"warning": warning.to_dict()},
            )


# =============================================================================
# REGISTRATION STEPS
# =============================================================================
class CreateIdentityStep(SagaStep[Identity]):
    """Step 1: Create the identity with the provider."""

    def __init__(self, gateway: IdentityGateway) -> None:
        self._gateway = gateway

    @property
    def name(self) -> str:
        return "create_identity"

    async def execute(self, context: dict[str, Any]) -> Result[Identity, AuthSessionError]:
        credential: Credential = context["credential"]
        result = await self._gateway.create_identity(
            credential.identifier,
            credential.secret,
            {
                "full_name": context["full_name"],
                "phone_number": context["phone_number"],
            },
        )
        if result.is_ok():
            identity = result.unwrap()
            context["identity"] = identity
            context["identity_id"] = identity.id
        return result

    async def compensate(self, context: dict[str, Any]) -> Result[None, AuthSessionError]:
        identity_id = context.get("identity_id")
        if not identity_id:
            return Ok(None)
        logger.info(f"Destroying identity {identity_id} after failed registration")
        return await self._gateway.destroy_identity(identity_id)


class InsertProfileStep(SagaStep[Profile]):
    """Step 2: Insert the profile keyed by the new identity id."""

    def __init__(self, store: ProfileStore) -> None:
        self._store = store

    @property
    def name(self) -> str:
        return "insert_profile"

    async def execute(self, context: dict[str, Any]) -> Result[Profile, AuthSessionError]:
        identity: Identity = context["identity"]
        profile = Profile(
            id=identity.id,
            full_name=context["full_name"],
            phone_number=context["phone_number"],
            email=identity.identifier,
        )
        result = await self._store.insert_profile(profile)
        if result.is_err():
            return result
        context["profile"] = profile
        return Ok(profile)


@dataclass(frozen=True)
class RegistrationOutcome:
    """Consistent pair produced by a successful registration."""
    identity: Identity
    profile: Profile
    saga_id: str


class RegistrationSaga:
    """
    Creates an (Identity, Profile) pair with compensating rollback.

    Usage:
        saga = RegistrationSaga(gateway, store, RetryPolicy.for_registration())
        result = await saga.run(credential, "Full Name", "+216...")
    """

    __slots__ = ("_gateway", "_store", "_policy")

    def __init__(
        self,
        gateway: IdentityGateway,
        store: ProfileStore,
        policy: RetryPolicy,
    ) -> None:
        self._gateway = gateway
        self._store = store
        self._policy = policy

    async def run(
        self,
        credential: Credential,
        full_name: str,
        phone_number: str,
    ) -> Result[RegistrationOutcome, AuthSessionError]:
        coordinator = (
            SagaCoordinator(self._policy)
            .add_step(CreateIdentityStep(self._gateway))
            .add_step(InsertProfileStep(self._store))
        )
        result = await coordinator.execute({
            "credential": credential,
            "full_name": full_name,
            "phone_number": phone_number,
        })
        if result.is_err():
            return result

        execution = result.unwrap()
        return Ok(RegistrationOutcome(
            identity=execution.context["identity"],
            profile=execution.context["profile"],
            saga_id=execution.saga_id,
        ))
