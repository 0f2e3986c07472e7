import logging
import uuid
from abc import ABC, abstractmethod
from typing import Any, Dict, Iterable, List, Optional, Set

from kiota_authentication_azure.azure_identity_authentication_provider import (
    AzureIdentityAuthenticationProvider,
)
from msgraph import GraphRequestAdapter, GraphServiceClient
from msgraph.generated.models.assigned_license import AssignedLicense
from msgraph.generated.models.password_profile import PasswordProfile
from msgraph.generated.models.reference_create import ReferenceCreate
from msgraph.generated.models.user import User as GraphUser
from msgraph.generated.users.item.assign_license.assign_license_post_request_body import (
    AssignLicensePostRequestBody,
)
from msgraph_core import GraphClientFactory

from ..config.settings import GRAPH_SCOPES, Settings, build_azure_credential, get_settings
from ..errors import AccountCreationError, AuthenticationError, DirectoryOperationError
from ..models.provisioning import AccountProfile, AccountRecord

logger = logging.getLogger(__name__)


class DirectorySession:
    """Authenticated context returned by ``DirectoryService.connect``."""

    def __init__(
        self,
        tenant_id: str,
        credential_ref: str,
        client: Any = None,
        credential: Any = None,
        http_client: Any = None,
    ):
        self.tenant_id = tenant_id
        self.credential_ref = credential_ref
        self.client = client
        self.credential = credential
        self.http_client = http_client
        self.closed = False

    def __repr__(self) -> str:
        return (
            f"DirectorySession(tenant_id={self.tenant_id!r}, "
            f"credential_ref={self.credential_ref!r}, closed={self.closed})"
        )


class DirectoryService(ABC):
    @abstractmethod
    async def connect(self, tenant_id: str, credential_ref: str) -> DirectorySession:
        pass

    @abstractmethod
    async def create_account(self, session: DirectorySession, profile: AccountProfile) -> AccountRecord:
        pass

    @abstractmethod
    async def add_group_member(self, session: DirectorySession, group_id: str, account_id: str) -> None:
        pass

    @abstractmethod
    async def assign_license(self, session: DirectorySession, account_id: str, sku_id: str) -> None:
        pass

    @abstractmethod
    async def disconnect(self, session: Optional[DirectorySession]) -> None:
        """Release the session. Called with ``None`` when connect never succeeded."""
        pass


class MockDirectoryService(DirectoryService):
    """In-memory tenant used for local runs and tests."""

    def __init__(
        self,
        known_groups: Optional[Iterable[str]] = None,
        known_skus: Optional[Iterable[str]] = None,
        existing_upns: Optional[Iterable[str]] = None,
    ):
        self.known_groups: Optional[Set[str]] = set(known_groups) if known_groups is not None else None
        self.known_skus: Optional[Set[str]] = set(known_skus) if known_skus is not None else None
        self.accounts: Dict[str, AccountRecord] = {}
        self.group_members: Dict[str, List[str]] = {}
        self.licenses: Dict[str, List[str]] = {}
        self.calls: List[str] = []
        self.sessions: List[DirectorySession] = []
        self.disconnect_calls = 0
        self._upns: Set[str] = {upn.lower() for upn in existing_upns or []}

    def _require_session(self, session: DirectorySession) -> None:
        if session is None or session.closed:
            raise DirectoryOperationError("No active directory session")

    async def connect(self, tenant_id: str, credential_ref: str) -> DirectorySession:
        self.calls.append("connect")
        session = DirectorySession(tenant_id=tenant_id, credential_ref=credential_ref)
        self.sessions.append(session)
        return session

    async def create_account(self, session: DirectorySession, profile: AccountProfile) -> AccountRecord:
        self.calls.append("create_account")
        self._require_session(session)

        upn = profile.user_principal_name.lower()
        if upn in self._upns:
            raise AccountCreationError(
                f"Another object with the same value for property userPrincipalName already exists: "
                f"{profile.user_principal_name}"
            )

        record = AccountRecord(
            account_id=str(uuid.uuid4()),
            display_name=profile.display_name,
            user_principal_name=profile.user_principal_name,
            mail_nickname=profile.mail_nickname,
            department=profile.department,
            job_title=profile.job_title,
        )
        self._upns.add(upn)
        self.accounts[record.account_id] = record
        return record

    async def add_group_member(self, session: DirectorySession, group_id: str, account_id: str) -> None:
        self.calls.append(f"add_group_member:{group_id}")
        self._require_session(session)

        if self.known_groups is not None and group_id not in self.known_groups:
            raise DirectoryOperationError(f"Group {group_id} does not exist", target=group_id)
        if account_id not in self.accounts:
            raise DirectoryOperationError(f"Account {account_id} does not exist", target=group_id)

        members = self.group_members.setdefault(group_id, [])
        if account_id in members:
            raise DirectoryOperationError(
                f"Account {account_id} is already a member of {group_id}", target=group_id
            )
        members.append(account_id)

    async def assign_license(self, session: DirectorySession, account_id: str, sku_id: str) -> None:
        self.calls.append(f"assign_license:{sku_id}")
        self._require_session(session)

        if self.known_skus is not None and sku_id not in self.known_skus:
            raise DirectoryOperationError(f"License {sku_id} is not available in the tenant", target=sku_id)
        if account_id not in self.accounts:
            raise DirectoryOperationError(f"Account {account_id} does not exist", target=sku_id)

        self.licenses.setdefault(account_id, []).append(sku_id)

    async def disconnect(self, session: Optional[DirectorySession]) -> None:
        self.calls.append("disconnect")
        self.disconnect_calls += 1
        if session is not None:
            session.closed = True


class GraphDirectoryService(DirectoryService):
    """Microsoft Graph backed directory for Entra ID tenants."""

    def __init__(self, settings: Optional[Settings] = None) -> None:
        self._settings = settings or get_settings()
        self._logger = logging.getLogger(f"{__name__}.GraphDirectoryService")

    async def connect(self, tenant_id: str, credential_ref: str) -> DirectorySession:
        credential = build_azure_credential(credential_ref, tenant_id, self._settings)
        try:
            # Fail here rather than on the first Graph call.
            await credential.get_token(*GRAPH_SCOPES)
        except Exception as exc:
            await credential.close()
            raise AuthenticationError(
                f"Unable to authenticate to tenant {tenant_id} using '{credential_ref}': {exc}"
            ) from exc

        client, http_client = _open_graph_client(credential)
        self._logger.info("Connected to Microsoft Graph for tenant %s", tenant_id)
        return DirectorySession(
            tenant_id=tenant_id,
            credential_ref=credential_ref,
            client=client,
            credential=credential,
            http_client=http_client,
        )

    def _client(self, session: DirectorySession) -> GraphServiceClient:
        if session is None or session.closed or session.client is None:
            raise DirectoryOperationError("Graph session is not connected")
        return session.client

    async def create_account(self, session: DirectorySession, profile: AccountProfile) -> AccountRecord:
        client = self._client(session)
        body = self._build_user_body(profile)

        try:
            created = await client.users.post(body)
        except Exception as exc:
            raise AccountCreationError(
                f"Graph rejected user {profile.user_principal_name}: {_describe_error(exc)}"
            ) from exc

        account_id = getattr(created, "id", None)
        if not account_id:
            raise AccountCreationError(
                f"Graph did not return an object id for {profile.user_principal_name}"
            )

        self._logger.info("Created user %s with id %s", profile.user_principal_name, account_id)
        return AccountRecord(
            account_id=account_id,
            display_name=profile.display_name,
            user_principal_name=profile.user_principal_name,
            mail_nickname=profile.mail_nickname,
            department=profile.department,
            job_title=profile.job_title,
        )

    async def add_group_member(self, session: DirectorySession, group_id: str, account_id: str) -> None:
        client = self._client(session)
        reference = ReferenceCreate(
            odata_id=f"https://graph.microsoft.com/v1.0/directoryObjects/{account_id}"
        )
        try:
            await client.groups.by_group_id(group_id).members.ref.post(reference)
        except Exception as exc:
            raise DirectoryOperationError(
                f"Failed to add {account_id} to group {group_id}: {_describe_error(exc)}",
                target=group_id,
            ) from exc
        self._logger.info("Added %s to group %s", account_id, group_id)

    async def assign_license(self, session: DirectorySession, account_id: str, sku_id: str) -> None:
        client = self._client(session)
        try:
            body = AssignLicensePostRequestBody(
                add_licenses=[AssignedLicense(sku_id=uuid.UUID(sku_id), disabled_plans=[])],
                remove_licenses=[],
            )
            await client.users.by_user_id(account_id).assign_license.post(body)
        except Exception as exc:
            raise DirectoryOperationError(
                f"Failed to assign license {sku_id} to {account_id}: {_describe_error(exc)}",
                target=sku_id,
            ) from exc
        self._logger.info("Assigned license %s to %s", sku_id, account_id)

    async def disconnect(self, session: Optional[DirectorySession]) -> None:
        if session is None or session.closed:
            return
        session.closed = True
        session.client = None
        try:
            if session.http_client is not None:
                await session.http_client.aclose()
        finally:
            if session.credential is not None:
                await session.credential.close()
        self._logger.info("Disconnected from Microsoft Graph for tenant %s", session.tenant_id)

    def _build_user_body(self, profile: AccountProfile) -> GraphUser:
        return GraphUser(
            account_enabled=profile.account_enabled,
            display_name=profile.display_name,
            user_principal_name=profile.user_principal_name,
            mail_nickname=profile.mail_nickname,
            department=profile.department,
            job_title=profile.job_title,
            usage_location=profile.usage_location,
            password_profile=PasswordProfile(
                force_change_password_next_sign_in=profile.force_change_password_next_sign_in,
                password=profile.password.get_secret_value(),
            ),
        )


def _open_graph_client(credential: Any):
    """Build a Graph client over an HTTP transport the session owns and closes."""
    http_client = GraphClientFactory.create_with_default_middleware()
    auth_provider = AzureIdentityAuthenticationProvider(credential, scopes=GRAPH_SCOPES)
    adapter = GraphRequestAdapter(auth_provider, client=http_client)
    return GraphServiceClient(request_adapter=adapter), http_client


def _describe_error(exc: Exception) -> str:
    """Prefer the OData error message Graph returns over the exception repr."""
    error = getattr(exc, "error", None)
    message = getattr(error, "message", None)
    if message:
        return str(message)
    return str(exc) or exc.__class__.__name__


def get_directory_service(settings: Optional[Settings] = None) -> DirectoryService:
    """Return the directory backend selected by configuration."""
    settings = settings or get_settings()

    if settings.directory_provider == "graph":
        logger.info("Using Microsoft Graph directory integration")
        return GraphDirectoryService(settings)

    logger.info("Using mock directory integration")
    return MockDirectoryService()
