"""Account onboarding workflow.

One request is turned into one result. Account creation (and everything it
depends on) is fatal; group membership, licensing, notification and
disconnect are best effort and only surface as warnings.
"""

import asyncio
import logging
from functools import partial
from typing import Any, Awaitable, Callable, List, Optional, Sequence, Type

from opentelemetry import trace
from pydantic import BaseModel, SecretStr, ValidationError

from ..config.settings import ConfigSource, Settings, SettingsConfigSource, get_settings
from ..credentials import generate_credential
from ..errors import (
    AccountCreationError,
    AuthenticationError,
    ConfigurationError,
    ProvisioningError,
    WarningKind,
)
from ..integrations.directory import (
    DirectoryService,
    DirectorySession,
    get_directory_service,
)
from ..integrations.notifications import NotificationSink, get_notification_sink
from ..models.provisioning import (
    AccountProfile,
    AccountRecord,
    ProvisioningRequest,
    ProvisioningResult,
    ProvisioningWarning,
    StepOutcome,
    StepStatus,
)
from ..utils.telemetry import ProvisioningEvent, provisioning_metrics


logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

DEFAULT_CREDENTIAL_REF = "managed_identity"
DEFAULT_PROPAGATION_DELAY = 10.0


class ResolvedConfiguration(BaseModel):
    tenant_id: str
    credential_ref: str = DEFAULT_CREDENTIAL_REF
    notification_email: Optional[str] = None
    usage_location: Optional[str] = None


class DirectorySessionScope:
    """Holds the directory session and releases it exactly once on exit."""

    def __init__(self, directory: DirectoryService):
        self._directory = directory
        self.session: Optional[DirectorySession] = None
        self.cleanup_warning: Optional[ProvisioningWarning] = None

    async def connect(self, tenant_id: str, credential_ref: str) -> DirectorySession:
        self.session = await self._directory.connect(tenant_id, credential_ref)
        return self.session

    async def __aenter__(self) -> "DirectorySessionScope":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> bool:
        try:
            await self._directory.disconnect(self.session)
        except Exception as cleanup_exc:
            self.cleanup_warning = ProvisioningWarning(
                kind=WarningKind.CLEANUP,
                target=self.session.tenant_id if self.session is not None else None,
                message=str(cleanup_exc) or cleanup_exc.__class__.__name__,
            )
            logger.warning("Directory disconnect failed: %s", self.cleanup_warning.message, exc_info=True)
            provisioning_metrics.record_event(
                ProvisioningEvent.for_warning(WarningKind.CLEANUP),
                self.cleanup_warning.model_dump(mode="json"),
            )
        return False


class ProvisioningWorkflow:
    def __init__(
        self,
        config: ConfigSource,
        directory: DirectoryService,
        notifier: NotificationSink,
        propagation_delay: float = DEFAULT_PROPAGATION_DELAY,
        credential_factory: Callable[[], str] = generate_credential,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.config = config
        self.directory = directory
        self.notifier = notifier
        self.propagation_delay = propagation_delay
        self._credential_factory = credential_factory
        self._sleep = sleep

    async def provision(self, request: ProvisioningRequest) -> ProvisioningResult:
        """Run every step for ``request``. Failures are returned, never raised."""
        provisioning_metrics.record_event(ProvisioningEvent.REQUESTED, {
            "upn": request.user_principal_name,
            "groups": len(request.group_ids),
            "license": bool(request.license_sku_id),
        })

        with tracer.start_as_current_span("provisioning.provision") as span:
            span.set_attribute("provisioning.upn", request.user_principal_name)
            try:
                async with DirectorySessionScope(self.directory) as scope:
                    result = await self._execute(request, scope)
            except Exception as exc:
                logger.error(
                    "Unexpected failure provisioning %s: %s",
                    request.user_principal_name,
                    exc,
                    exc_info=True,
                )
                result = build_failure_result(
                    request.user_principal_name,
                    request.display_name,
                    f"{exc.__class__.__name__}: {exc}",
                )
            span.set_attribute("provisioning.success", result.success)

        provisioning_metrics.record_event(
            ProvisioningEvent.COMPLETED if result.success else ProvisioningEvent.FAILED,
            {"upn": request.user_principal_name, "warnings": len(result.warnings)},
        )
        return result

    async def _execute(self, request: ProvisioningRequest, scope: DirectorySessionScope) -> ProvisioningResult:
        warnings: List[ProvisioningWarning] = []

        outcome = await self._run_step(
            "resolve_configuration", self._resolve_configuration, error_type=ConfigurationError
        )
        if outcome.is_fatal:
            return build_failure_result(request.user_principal_name, request.display_name, outcome.error)
        config: ResolvedConfiguration = outcome.value

        outcome = await self._run_step(
            "connect",
            partial(scope.connect, config.tenant_id, config.credential_ref),
            error_type=AuthenticationError,
        )
        if outcome.is_fatal:
            return build_failure_result(request.user_principal_name, request.display_name, outcome.error)
        session: DirectorySession = outcome.value

        password = self._credential_factory()
        profile = AccountProfile.from_request(request, password, config.usage_location)

        outcome = await self._run_step(
            "create_account",
            partial(self.directory.create_account, session, profile),
            error_type=AccountCreationError,
        )
        if outcome.is_fatal:
            return build_failure_result(request.user_principal_name, request.display_name, outcome.error)
        account: AccountRecord = outcome.value
        provisioning_metrics.record_event(ProvisioningEvent.ACCOUNT_CREATED, {"account_id": account.account_id})

        if self.propagation_delay > 0:
            logger.info("Waiting %.1fs for directory replication", self.propagation_delay)
            await self._sleep(self.propagation_delay)

        for group_id in request.group_ids:
            outcome = await self._run_step(
                "add_group_member",
                partial(self.directory.add_group_member, session, group_id, account.account_id),
                warning_kind=WarningKind.GROUP_ASSIGNMENT,
                target=group_id,
            )
            self._collect(outcome, warnings)

        if request.license_sku_id:
            outcome = await self._run_step(
                "assign_license",
                partial(self.directory.assign_license, session, account.account_id, request.license_sku_id),
                warning_kind=WarningKind.LICENSE_ASSIGNMENT,
                target=request.license_sku_id,
            )
            self._collect(outcome, warnings)

        if request.send_notification:
            if config.notification_email:
                subject, body = compose_notification(request, account, password, warnings)
                outcome = await self._run_step(
                    "notify",
                    partial(self.notifier.send, config.notification_email, subject, body),
                    warning_kind=WarningKind.NOTIFICATION,
                    target=config.notification_email,
                )
                self._collect(outcome, warnings)
            else:
                logger.info("Notification requested but no notification address is configured")

        message = f"User {account.display_name} ({account.user_principal_name}) created successfully"
        if warnings:
            message += f" with {len(warnings)} warning(s)"
        logger.info(message)

        return ProvisioningResult(
            success=True,
            account_id=account.account_id,
            user_principal_name=account.user_principal_name,
            display_name=account.display_name,
            credential=SecretStr(password),
            message=message,
            warnings=warnings,
        )

    async def _resolve_configuration(self) -> ResolvedConfiguration:
        return ResolvedConfiguration(
            tenant_id=self.config.get("tenant_id"),
            credential_ref=self.config.get_optional("credential_ref") or DEFAULT_CREDENTIAL_REF,
            notification_email=self.config.get_optional("notification_email"),
            usage_location=self.config.get_optional("usage_location"),
        )

    async def _run_step(
        self,
        step: str,
        action: Callable[[], Awaitable[Any]],
        error_type: Type[ProvisioningError] = ProvisioningError,
        warning_kind: Optional[WarningKind] = None,
        target: Optional[str] = None,
    ) -> StepOutcome:
        """Run one collaborator call and classify its outcome.

        Steps with a ``warning_kind`` are best effort; any other failure is
        fatal and reported under ``error_type``'s name.
        """
        with tracer.start_as_current_span(f"provisioning.{step}"):
            try:
                value = await action()
            except Exception as exc:
                detail = str(exc) or exc.__class__.__name__
                expected = isinstance(exc, ProvisioningError)

                if warning_kind is not None:
                    logger.warning(
                        "%s failed for %s: %s", step, target, detail, exc_info=not expected
                    )
                    provisioning_metrics.record_event(ProvisioningEvent.for_warning(warning_kind), {
                        "target": target,
                    })
                    return StepOutcome.warn(
                        step, ProvisioningWarning(kind=warning_kind, target=target, message=detail)
                    )

                logger.error("%s failed: %s", step, detail, exc_info=not expected)
                return StepOutcome.fatal(step, f"{error_type.__name__}: {detail}")

        return StepOutcome.ok(step, value)

    def _collect(self, outcome: StepOutcome, warnings: List[ProvisioningWarning]) -> None:
        if outcome.status == StepStatus.WARNING and outcome.warning is not None:
            warnings.append(outcome.warning)


def build_failure_result(
    user_principal_name: str,
    display_name: str,
    error: Optional[str],
) -> ProvisioningResult:
    return ProvisioningResult(
        success=False,
        user_principal_name=user_principal_name,
        display_name=display_name,
        message=f"Failed to provision user {user_principal_name}",
        error=error or "Unknown error",
    )


def compose_notification(
    request: ProvisioningRequest,
    account: AccountRecord,
    password: str,
    warnings: Sequence[ProvisioningWarning],
):
    """Build the subject and plain-text body sent to the service desk."""
    subject = f"New user account created: {account.display_name}"

    lines = [
        "A new user account has been provisioned.",
        "",
        f"Display name: {account.display_name}",
        f"User principal name: {account.user_principal_name}",
        f"Mail nickname: {account.mail_nickname}",
        f"Department: {account.department or 'Not specified'}",
        f"Job title: {account.job_title or 'Not specified'}",
        f"Object ID: {account.account_id}",
        f"Temporary password: {password}",
        "The password must be changed at next sign-in.",
    ]

    failed_groups = {w.target for w in warnings if w.kind == WarningKind.GROUP_ASSIGNMENT}
    if request.group_ids:
        assigned = [g for g in request.group_ids if g not in failed_groups]
        lines.append(f"Groups assigned: {', '.join(assigned) or 'None'}")
    if failed_groups:
        lines.append(f"Groups not assigned: {', '.join(sorted(failed_groups))}")
    if request.license_sku_id:
        license_failed = any(w.kind == WarningKind.LICENSE_ASSIGNMENT for w in warnings)
        status = "FAILED" if license_failed else "assigned"
        lines.append(f"License {request.license_sku_id}: {status}")

    return subject, "\n".join(lines)


async def provision_user(
    display_name: str,
    user_principal_name: str,
    mail_nickname: str,
    department: Optional[str] = None,
    job_title: Optional[str] = None,
    group_ids: Optional[Sequence[str]] = None,
    license_sku_id: Optional[str] = None,
    send_notification: bool = False,
    *,
    config: Optional[ConfigSource] = None,
    directory: Optional[DirectoryService] = None,
    notifier: Optional[NotificationSink] = None,
    settings: Optional[Settings] = None,
) -> ProvisioningResult:
    """Onboard one user. Collaborators default to the configured backends."""
    try:
        request = ProvisioningRequest(
            display_name=display_name,
            user_principal_name=user_principal_name,
            mail_nickname=mail_nickname,
            department=department,
            job_title=job_title,
            group_ids=list(group_ids or []),
            license_sku_id=license_sku_id,
            send_notification=send_notification,
        )
    except ValidationError as exc:
        logger.error("Invalid provisioning request for %s: %s", user_principal_name, exc)
        return build_failure_result(
            user_principal_name or "",
            display_name or "",
            f"ValidationError: {describe_validation_error(exc)}",
        )

    try:
        settings = settings or get_settings()
        config = config or SettingsConfigSource(settings)
        workflow = ProvisioningWorkflow(
            config=config,
            directory=directory or get_directory_service(settings),
            notifier=notifier or get_notification_sink(settings, config),
            propagation_delay=settings.propagation_delay_seconds,
        )
    except (ValidationError, ProvisioningError) as exc:
        logger.error("Unable to load provisioning configuration: %s", exc)
        detail = describe_validation_error(exc) if isinstance(exc, ValidationError) else str(exc)
        if directory is not None:
            async with DirectorySessionScope(directory):
                pass
        return build_failure_result(request.user_principal_name, request.display_name, f"ConfigurationError: {detail}")

    return await workflow.provision(request)


def describe_validation_error(exc: ValidationError) -> str:
    """Flatten pydantic errors into ``field: message`` pairs."""
    return "; ".join(
        f"{'.'.join(str(part) for part in error['loc'])}: {error['msg']}" for error in exc.errors()
    )
