"""
Per-session Jenkins credentials.

Credentials come from two places:

  - the lifespan context: environment variables (or CLI flags, which are
    written into the environment) loaded once at startup;
  - request headers (x-jenkins-url / x-jenkins-username / x-jenkins-password)
    sent by HTTP clients, which override the lifespan values field by field.

Each MCP session gets a JenkinsRuntime that builds Jenkins clients from the
each request's credentials.  SessionRegistry is the session-id -> runtime map shared
by concurrent request handlers.
"""

from __future__ import annotations

import logging
import os
import threading
from collections import OrderedDict
from collections.abc import Mapping
from dataclasses import dataclass

from mcp_jenkins.jenkins_api import Jenkins

logger = logging.getLogger(__name__)

_DEFAULT_TIMEOUT = 5
_MAX_SESSIONS = 1000


class MissingCredentialsError(RuntimeError):
    """No Jenkins URL/username/password available for this session."""


def _env_bool(value: str | None, default: bool) -> bool:
    if value is None or value == "":
        return default
    return value.lower() not in ("false", "0", "no")


def _env_int(value: str | None, default: int, name: str) -> int:
    if value is None or value == "":
        return default
    try:
        parsed = int(value)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {value!r}.") from None
    if parsed <= 0:
        raise ValueError(f"{name} must be a positive integer, got {parsed}.")
    return parsed


@dataclass(frozen=True)
class LifespanContext:
    jenkins_url: str | None = None
    jenkins_username: str | None = None
    jenkins_password: str | None = None
    jenkins_timeout: int = _DEFAULT_TIMEOUT
    jenkins_verify_ssl: bool = True
    jenkins_session_singleton: bool = True


def load_lifespan_context_from_env(env: Mapping[str, str] | None = None) -> LifespanContext:
    env = os.environ if env is None else env
    return LifespanContext(
        jenkins_url=env.get("JENKINS_URL") or None,
        jenkins_username=env.get("JENKINS_USERNAME") or None,
        jenkins_password=env.get("JENKINS_PASSWORD") or None,
        jenkins_timeout=_env_int(env.get("JENKINS_TIMEOUT"), _DEFAULT_TIMEOUT, "JENKINS_TIMEOUT"),
        jenkins_verify_ssl=_env_bool(env.get("JENKINS_VERIFY_SSL"), True),
        jenkins_session_singleton=_env_bool(env.get("JENKINS_SESSION_SINGLETON"), True),
    )


@dataclass(frozen=True)
class JenkinsHeaderAuth:
    jenkins_url: str | None = None
    jenkins_username: str | None = None
    jenkins_password: str | None = None


def extract_jenkins_auth_from_headers(headers: Mapping[str, str]) -> JenkinsHeaderAuth:
    lowered = {k.lower(): v for k, v in headers.items()}
    return JenkinsHeaderAuth(
        jenkins_url=lowered.get("x-jenkins-url") or None,
        jenkins_username=lowered.get("x-jenkins-username") or None,
        jenkins_password=lowered.get("x-jenkins-password") or None,
    )


class JenkinsRuntime:
    """Hands out Jenkins clients for one session."""

    def __init__(self, lifespan: LifespanContext):
        self._lifespan = lifespan
        self._client: Jenkins | None = None
        self._lock = threading.Lock()

    def get_jenkins(self, header_auth: JenkinsHeaderAuth | None = None) -> Jenkins:
        """Return a client for the request's credentials.

        ``header_auth`` fields override the lifespan values one by one.  With
        session singleton enabled the first client is reused for the life of
        the session, even if later requests send other headers.
        """
        header_auth = header_auth or JenkinsHeaderAuth()
        singleton = self._lifespan.jenkins_session_singleton
        with self._lock:
            if singleton and self._client is not None:
                return self._client

            url = header_auth.jenkins_url or self._lifespan.jenkins_url
            username = header_auth.jenkins_username or self._lifespan.jenkins_username
            password = header_auth.jenkins_password or self._lifespan.jenkins_password
            if not (url and username and password):
                raise MissingCredentialsError(
                    "Jenkins authentication details are missing. Please provide them via "
                    "x-jenkins-* headers or CLI arguments (--jenkins-url, "
                    "--jenkins-username, --jenkins-password)."
                )

            client = Jenkins(
                url=url,
                username=username,
                password=password,
                timeout=self._lifespan.jenkins_timeout,
                verify_ssl=self._lifespan.jenkins_verify_ssl,
            )
            if singleton:
                self._client = client
            return client


class SessionRegistry:
    """Thread-safe session id -> JenkinsRuntime map.

    Keeps the most recently used sessions only; MCP transports do not tell
    tools when a session ends.
    """

    def __init__(self, lifespan: LifespanContext, max_sessions: int = _MAX_SESSIONS):
        self.lifespan = lifespan
        self._max_sessions = max_sessions
        self._runtimes: OrderedDict[str, JenkinsRuntime] = OrderedDict()
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._runtimes)

    def runtime_for(self, session_id: str) -> JenkinsRuntime:
        with self._lock:
            runtime = self._runtimes.get(session_id)
            if runtime is None:
                runtime = JenkinsRuntime(self.lifespan)
                self._runtimes[session_id] = runtime
                logger.debug("New Jenkins session %s", session_id)
                while len(self._runtimes) > self._max_sessions:
                    evicted, _ = self._runtimes.popitem(last=False)
                    logger.debug("Evicted Jenkins session %s", evicted)
            else:
                self._runtimes.move_to_end(session_id)
            return runtime
