#!/usr/bin/env python3
"""
GTA - GCP provider

Purpose:
  Grant temporary IAM roles on a GCP project as conditional bindings, revoke
  the ones this process granted, and list or clean every temporary binding
  the tool ever created.

Safety:
  - The policy is re-read right before every write and never cached.
  - Revoke only touches bindings recorded by this process.
  - Dry-run mode never calls set_iam_policy.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, List

import google.auth
import requests
from google.api_core.exceptions import GoogleAPIError
from google.auth.exceptions import GoogleAuthError
from google.auth.transport.requests import AuthorizedSession, Request
from google.cloud import resourcemanager_v3
from google.iam.v1 import iam_policy_pb2, options_pb2, policy_pb2

import bindings
from bindings import GrantedRole, TemporaryBinding
from gta_errors import GrantError, IdentityError

logger = logging.getLogger("gta.provider")

CLOUD_PLATFORM_SCOPE = "https://www.googleapis.com/auth/cloud-platform"
USERINFO_SCOPE = "https://www.googleapis.com/auth/userinfo.email"
USERINFO_URL = "https://www.googleapis.com/oauth2/v2/userinfo"


@dataclass
class GCPOptions:
    project: str
    roles: List[str] = field(default_factory=list)
    user: str = ""
    ttl: timedelta = timedelta(hours=1)


def resolve_current_user(credentials: Any = None) -> str:
    """Return the email of the identity behind the active credentials."""
    try:
        if credentials is None:
            credentials, _ = google.auth.default(scopes=[CLOUD_PLATFORM_SCOPE, USERINFO_SCOPE])

        # GCE metadata credentials only learn their email on refresh
        if getattr(credentials, "service_account_email", None) == "default":
            credentials.refresh(Request())

        email = getattr(credentials, "service_account_email", None)
        if not email:
            resp = AuthorizedSession(credentials).get(USERINFO_URL, timeout=30)
            resp.raise_for_status()
            email = resp.json().get("email")
    except (GoogleAuthError, requests.RequestException) as e:
        raise IdentityError(f"failed to get current user: {e}") from e

    if not email:
        raise IdentityError("no email found in credentials")
    return email


def _check_options(opts: Any) -> GCPOptions:
    if not isinstance(opts, GCPOptions):
        raise TypeError(f"invalid options type: {type(opts).__name__}")
    return opts


class GCPProvider:

    def __init__(self, client: Any = None, dry_run: bool = False, credentials: Any = None):
        """Set up the Resource Manager client (Application Default Credentials unless given)."""
        if client is None:
            client = resourcemanager_v3.ProjectsClient(credentials=credentials)
        self.client = client
        self.credentials = credentials
        self.dry_run = dry_run
        self.granted_roles: List[GrantedRole] = []

    # ---------- Policy I/O ----------

    @staticmethod
    def _resource(project: str) -> str:
        return project if project.startswith("projects/") else f"projects/{project}"

    def get_iam_policy(self, project: str) -> policy_pb2.Policy:
        """Fetch the project policy and bump it to the version that supports conditions."""
        request = iam_policy_pb2.GetIamPolicyRequest(
            resource=self._resource(project),
            options=options_pb2.GetPolicyOptions(requested_policy_version=bindings.POLICY_VERSION),
        )
        # no client-side retries: a failed call is reported and the next item proceeds
        policy = self.client.get_iam_policy(request=request, retry=None)
        policy.version = bindings.POLICY_VERSION
        return policy

    def set_iam_policy(self, project: str, policy: policy_pb2.Policy) -> None:
        policy.version = bindings.POLICY_VERSION
        request = iam_policy_pb2.SetIamPolicyRequest(resource=self._resource(project), policy=policy)
        self.client.set_iam_policy(request=request, retry=None)

    # ---------- Operations ----------

    def grant(self, opts: GCPOptions) -> List[GrantedRole]:
        """
        Grant each role in opts.roles to opts.user for opts.ttl.

        A failed role is logged and skipped. GrantError is raised only when
        none of the roles in this call could be granted.
        """
        opts = _check_options(opts)
        if not opts.user:
            opts.user = resolve_current_user(self.credentials)
            logger.debug("Using current user: %s", opts.user)

        member = bindings.format_member(opts.user)
        granted: List[GrantedRole] = []
        grant_errors: List[str] = []

        for role in opts.roles:
            role = bindings.format_role(role)
            logger.info("Granting role %s to %s in project %s for %s", role, opts.user, opts.project, opts.ttl)
            if self.dry_run:
                logger.info("[DRY-RUN] Would grant role %s to %s in project %s", role, opts.user, opts.project)
                continue

            try:
                policy = self.get_iam_policy(opts.project)
                binding = bindings.build_binding(role, member, opts.ttl)
                policy.bindings.append(binding)
                self.set_iam_policy(opts.project, policy)
            except (GoogleAPIError, GoogleAuthError) as e:
                logger.warning("Failed to update IAM policy for role %s: %s", role, e)
                grant_errors.append(f"role {role}: {e}")
                continue

            record = GrantedRole(role=role, binding_id=binding.condition.title)
            self.granted_roles.append(record)
            granted.append(record)
            logger.debug("Granted role %s with binding %s", role, record.binding_id)

        if grant_errors:
            if not granted:
                raise GrantError(f"failed to grant any roles: {'; '.join(grant_errors)}")
            logger.warning("Failed to grant some roles: %s", "; ".join(grant_errors))

        return granted

    def revoke(self, opts: GCPOptions) -> List[GrantedRole]:
        """Remove opts.user from every binding this process granted. Failures are logged only."""
        opts = _check_options(opts)
        if not self.granted_roles:
            logger.info("No roles to revoke")
            return []

        if not opts.user:
            opts.user = resolve_current_user(self.credentials)
        member = bindings.format_member(opts.user)
        revoked: List[GrantedRole] = []
        revoke_errors: List[str] = []

        for granted in list(self.granted_roles):
            logger.info("Revoking role %s from %s in project %s", granted.role, opts.user, opts.project)
            if self.dry_run:
                logger.info("[DRY-RUN] Would revoke role %s from %s in project %s",
                            granted.role, opts.user, opts.project)
                continue

            try:
                policy = self.get_iam_policy(opts.project)
                if not bindings.remove_member(policy, granted.role, granted.binding_id, member):
                    logger.warning("Binding %s for role %s is already gone", granted.binding_id, granted.role)
                    self.granted_roles.remove(granted)
                    continue
                self.set_iam_policy(opts.project, policy)
            except (GoogleAPIError, GoogleAuthError) as e:
                logger.warning("Failed to update IAM policy for role %s: %s", granted.role, e)
                revoke_errors.append(f"role {granted.role}: {e}")
                continue

            self.granted_roles.remove(granted)
            revoked.append(granted)

        if revoke_errors:
            logger.warning("Failed to revoke some roles: %s", "; ".join(revoke_errors))

        return revoked

    def list_temporary_bindings(self, opts: GCPOptions) -> List[TemporaryBinding]:
        opts = _check_options(opts)
        policy = self.get_iam_policy(opts.project)
        found = bindings.find_temporary(policy, bindings.format_member(opts.user) if opts.user else None)

        if not found:
            logger.info("No temporary bindings found")
            return found

        now = datetime.now(timezone.utc)
        for tb in found:
            logger.info("Found temporary binding: Role=%s, Member=%s, Expires=%s%s, ID=%s",
                        tb.role, tb.member, tb.expires,
                        " (expired)" if tb.is_expired(now) else "", tb.binding_id)
        return found

    def clean_temporary_bindings(self, opts: GCPOptions) -> List[TemporaryBinding]:
        """
        Remove every temporary binding (for opts.user when set) in one write.

        In dry-run mode the matches are only reported.
        """
        opts = _check_options(opts)
        policy = self.get_iam_policy(opts.project)
        found = bindings.find_temporary(policy, bindings.format_member(opts.user) if opts.user else None)

        if not found:
            logger.info("No temporary bindings found")
            return found

        for tb in found:
            if self.dry_run:
                logger.info("[DRY-RUN] Would remove binding: Role=%s, Member=%s, ID=%s",
                            tb.role, tb.member, tb.binding_id)
            else:
                logger.info("Found binding to remove: Role=%s, Member=%s, ID=%s",
                            tb.role, tb.member, tb.binding_id)

        if self.dry_run:
            return found

        removed = bindings.strip_matches(policy, found)
        self.set_iam_policy(opts.project, policy)
        logger.info("Successfully cleaned up %d temporary binding(s)", removed)
        return found
