import json
import logging
import os
import subprocess
from datetime import datetime, timedelta
from typing import Dict, Optional

import humanize
from dateutil.parser import parse as parse_date

from agentmon.config import Agent
from agentmon.tools.timekeeping import date_now

TOKEN_HEADER = "X-Nomad-Token"


class AuthContainer:
    def __init__(
        self, *, token: Optional[str], expiry_date: Optional[datetime] = None
    ) -> None:
        self.token = token
        self.expiry_date = expiry_date

    def has_expired(self) -> bool:
        if self.expiry_date is None:
            return False

        # Refresh a few minutes before the deadline to account for clock skew,
        # otherwise the agent may reject a token we still consider valid.
        return date_now() >= (self.expiry_date - timedelta(minutes=5))


class AuthProvider:
    """
    Produces the headers that authorize requests against an agent. The token
    is either configured directly or handed to us by a credential helper; we
    never mint credentials ourselves.
    """

    def __init__(self, agent: Agent, logger=None) -> None:
        self.agent = agent
        self.logger = logger or logging.getLogger("auth")

        self.container: Optional[AuthContainer] = None  # lazy attribute

    def run_helper(self) -> AuthContainer:
        helper = self.agent.token_helper
        assert helper is not None  # help mypy

        args = [helper.command] + helper.args

        environ = dict(os.environ)
        environ.update(helper.env)

        try:
            proc = subprocess.run(
                args,
                env=environ,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                timeout=30,
            )
        except (OSError, subprocess.TimeoutExpired) as exc:
            self.logger.error(
                "[%s] Failed to run token helper %r: %r",
                self.agent.short_name,
                helper.command,
                exc,
            )
            return AuthContainer(token=None)

        stdout, stderr = proc.stdout.decode(), proc.stderr.decode()

        if proc.returncode == 0:
            try:
                doc = json.loads(stdout)
                token = doc["token"]
                expiry = doc.get("expirationTimestamp")
                expiry_date = parse_date(expiry) if expiry else None
            except (ValueError, KeyError, TypeError):
                self.logger.error(
                    "[%s] Token helper returned unparseable output: <<<%s>>>",
                    self.agent.short_name,
                    stdout.strip()[:200],
                )
                return AuthContainer(token=None)

            if expiry_date is not None:
                time_left = humanize.naturaldelta(expiry_date - date_now())
                self.logger.info(
                    "[%s] Obtained token valid until: %s, will expire in: %s",
                    self.agent.short_name,
                    expiry_date,
                    time_left,
                )

            return AuthContainer(token=token, expiry_date=expiry_date)

        self.logger.error(
            "Failed to obtain token from helper:"
            "\nexit_code: %s\nstdout: <<<%s>>>\nstderr: <<<%s>>>",
            proc.returncode,
            stdout.strip(),
            stderr.strip(),
        )
        return AuthContainer(token=None)

    def create_container(self) -> AuthContainer:
        if self.agent.token:
            return AuthContainer(token=self.agent.token)

        if self.agent.token_helper:
            return self.run_helper()

        return AuthContainer(token=None)

    def get_token(self) -> Optional[str]:
        if self.container is None or self.container.has_expired():
            self.container = self.create_container()

        return self.container.token

    def get_headers(self) -> Dict[str, str]:
        token = self.get_token()
        if not token:
            return {}

        return {TOKEN_HEADER: token}
