import base64
import fnmatch
import logging
import os
from ssl import SSLContext, create_default_context
from typing import Dict, List, Optional, Sequence

import yaml

from agentmon.model.params import RetryPolicy
from agentmon.tools.repr import disp_secret_blob, disp_secret_string

DEFAULT_ENDPOINT = "/v1/agent/monitor"


class TokenHelper:
    def __init__(self, *, command: str, args: Sequence[str], env: Dict[str, str]) -> None:
        self.command = command
        self.args = list(args)
        self.env = env

    def __repr__(self) -> str:
        return "<%s command=%r, args=%r>" % (
            self.__class__.__name__,
            self.command,
            self.args,
        )


class Agent:
    def __init__(
        self,
        *,
        name: str,
        address: str,
        ca_cert_path: Optional[str] = None,
        ca_cert_data: Optional[str] = None,
        client_cert_path: Optional[str] = None,
        client_key_path: Optional[str] = None,
        token: Optional[str] = None,
        token_helper: Optional[TokenHelper] = None,
    ) -> None:
        self.name = name
        self.address = address.rstrip("/")
        self.ca_cert_path = ca_cert_path
        self.ca_cert_data = ca_cert_data
        self.client_cert_path = client_cert_path
        self.client_key_path = client_key_path
        self.token = token
        self.token_helper = token_helper

        # host.company.com -> host
        self.short_name = name.split(".")[0]

    def __repr__(self) -> str:
        return (
            "<%s name=%r, address=%r, ca_cert_path=%r, ca_cert_data=%s, "
            "client_cert_path=%r, token=%s, token_helper=%r>"
        ) % (
            self.__class__.__name__,
            self.name,
            self.address,
            self.ca_cert_path,
            disp_secret_blob(self.ca_cert_data),
            self.client_cert_path,
            disp_secret_string(self.token),
            self.token_helper,
        )

    @property
    def uses_tls(self) -> bool:
        return self.address.startswith("https://")

    def create_ssl_context(self) -> Optional[SSLContext]:
        if not self.uses_tls:
            return None

        kwargs = {}

        if self.ca_cert_path:
            kwargs["cafile"] = self.ca_cert_path

        elif self.ca_cert_data:
            value = base64.b64decode(self.ca_cert_data)
            kwargs["cadata"] = value.decode()

        ssl_context = create_default_context(**kwargs)

        if self.client_cert_path and self.client_key_path:
            ssl_context.load_cert_chain(
                certfile=self.client_cert_path,
                keyfile=self.client_key_path,
            )

        return ssl_context


class MonitorSettings:
    def __init__(
        self, *, endpoint: str = DEFAULT_ENDPOINT, policy: Optional[RetryPolicy] = None
    ) -> None:
        self.endpoint = endpoint
        self.policy = policy or RetryPolicy()

    def __repr__(self) -> str:
        return "<%s endpoint=%r, policy=%r>" % (
            self.__class__.__name__,
            self.endpoint,
            self.policy,
        )


class AgentConfigFile:
    def __init__(
        self,
        *,
        filepath: str,
        agents: Sequence[Agent],
        settings: Optional[MonitorSettings],
        mtime: float,
    ) -> None:
        self.filepath = filepath
        self.agents = agents or []
        self.settings = settings
        self.mtime = mtime

    def __repr__(self) -> str:
        return "<%s filepath=%r, agents=%r, settings=%r>" % (
            self.__class__.__name__,
            self.filepath,
            self.agents,
            self.settings,
        )


class AgentConfigCollection:
    def __init__(self) -> None:
        self.agents: Dict[str, Agent] = {}
        self.settings = MonitorSettings()

    def add_file(self, config_file: AgentConfigFile) -> None:
        # NOTE: later files win when agent names collide

        for agent in config_file.agents:
            self.agents[agent.name] = agent

        if config_file.settings is not None:
            self.settings = config_file.settings

    def add_agent(self, agent: Agent) -> None:
        self.agents[agent.name] = agent

    def get_agent_names(self) -> Sequence[str]:
        names = list(self.agents.keys())
        names.sort()
        return names

    def get_agent(self, name) -> Optional[Agent]:
        return self.agents.get(name)


class AgentConfigSelector:
    def __init__(self, *, collection: AgentConfigCollection) -> None:
        self.collection = collection

    @property
    def settings(self) -> MonitorSettings:
        return self.collection.settings

    def fnmatch_agent(self, pattern: str) -> List[Agent]:
        names = self.collection.get_agent_names()
        names = fnmatch.filter(names, pattern)
        objs = [self.collection.get_agent(name) for name in names]
        agents = [agent for agent in objs if agent]
        return agents


class AgentConfigLoader:
    def __init__(
        self,
        *,
        config_dir="$HOME/.agentmon",
        config_var="AGENTMON_CONFIG",
        environ=None,
        logger=None,
    ) -> None:
        self.config_dir = config_dir
        self.config_var = config_var
        self.environ = os.environ if environ is None else environ
        self.logger = logger or logging.getLogger("config-loader")

    def get_candidate_files(self) -> Sequence[str]:
        # use config_var if set
        env_var = self.environ.get(self.config_var)
        if env_var:
            filepaths = env_var.split(":")
            filepaths = [fp.strip() for fp in filepaths if fp.strip()]
            return filepaths

        # fall back on config_dir
        path = os.path.expandvars(self.config_dir)
        if not os.path.isdir(path):
            return []

        filepaths = []
        for fn in sorted(os.listdir(path)):
            fp = os.path.join(path, fn)
            if not os.path.isfile(fp) or not fn.endswith((".yaml", ".yml")):
                continue

            filepaths.append(fp)

        return filepaths

    def parse_token_helper(self, dct) -> Optional[TokenHelper]:
        if not dct:
            return None

        command = dct.get("command")
        if not command:
            self.logger.warning("Token helper has no command: %r", dct)
            return None

        env = {}
        for item in dct.get("env") or []:
            env[item["name"]] = item["value"]

        return TokenHelper(command=command, args=dct.get("args") or [], env=env)

    def parse_agent(self, dct) -> Optional[Agent]:
        name = dct.get("name")
        address = dct.get("address")

        # 'name' and 'address' are required attributes
        if not (name and address):
            self.logger.warning("Skipping agent without name or address: %r", name)
            return None

        return Agent(
            name=name,
            address=address,
            ca_cert_path=dct.get("ca-cert"),
            ca_cert_data=dct.get("ca-cert-data"),
            client_cert_path=dct.get("client-cert"),
            client_key_path=dct.get("client-key"),
            token=dct.get("token"),
            token_helper=self.parse_token_helper(dct.get("token-helper")),
        )

    def parse_settings(self, dct) -> Optional[MonitorSettings]:
        if not dct:
            return None

        defaults = RetryPolicy()
        policy = RetryPolicy(
            max_attempts=int(dct.get("max-attempts", defaults.max_attempts)),
            initial_delay_s=float(dct.get("initial-delay", defaults.initial_delay_s)),
            multiplier=float(dct.get("multiplier", defaults.multiplier)),
            max_delay_s=float(dct.get("max-delay", defaults.max_delay_s)),
            page_attempts=int(dct.get("page-attempts", defaults.page_attempts)),
            page_size=int(dct.get("page-size", defaults.page_size)),
        )

        endpoint = dct.get("endpoint") or DEFAULT_ENDPOINT
        return MonitorSettings(endpoint=endpoint, policy=policy)

    def load_file(self, filepath: str) -> Optional[AgentConfigFile]:
        try:
            with open(filepath, "rb") as fl:
                dct = yaml.load(fl, Loader=yaml.SafeLoader)
        except OSError:
            self.logger.warning("Failed to read agent config: %s", filepath)
            return None
        except yaml.YAMLError:
            self.logger.warning("Failed to parse agent config as yaml: %s", filepath)
            return None

        if not isinstance(dct, dict) or dct.get("kind") != "AgentConfig":
            self.logger.warning("Agent config does not have kind: AgentConfig: %s", filepath)
            return None

        agent_list = [self.parse_agent(agent) for agent in dct.get("agents") or []]
        agents = [agent for agent in agent_list if agent]

        try:
            settings = self.parse_settings(dct.get("monitor"))
        except (TypeError, ValueError):
            self.logger.warning("Ignoring invalid monitor settings in: %s", filepath)
            settings = None

        st = os.stat(filepath)

        return AgentConfigFile(
            filepath=filepath,
            agents=agents,
            settings=settings,
            mtime=st.st_mtime,
        )

    def agent_from_environ(self) -> Optional[Agent]:
        address = self.environ.get("NOMAD_ADDR")
        if not address:
            return None

        return Agent(
            name="default",
            address=address,
            ca_cert_path=self.environ.get("NOMAD_CACERT"),
            client_cert_path=self.environ.get("NOMAD_CLIENT_CERT"),
            client_key_path=self.environ.get("NOMAD_CLIENT_KEY"),
            token=self.environ.get("NOMAD_TOKEN"),
        )

    def create_collection(self) -> AgentConfigCollection:
        collection = AgentConfigCollection()

        for filepath in self.get_candidate_files():
            config_file = self.load_file(filepath)
            if config_file:
                collection.add_file(config_file)

        agent = self.agent_from_environ()
        if agent:
            collection.add_agent(agent)

        return collection


def get_selector() -> AgentConfigSelector:
    loader = AgentConfigLoader()
    collection = loader.create_collection()
    selector = AgentConfigSelector(collection=collection)
    return selector
