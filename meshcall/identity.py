"""
Service identity

Resolves the namespaced full name of a service and every subject or queue group
derived from it.
"""

from dataclasses import dataclass

from meshcall.errors import ConfigError

LOG_TOKEN = "_LOG"
EXPOSE_QUEUE_SUFFIX = "__EXPOSE__"
OBSERVE_QUEUE_SUFFIX = "__OBSERVE__"


class LogKind:
    """Observability log kinds"""
    EXPOSE = "EXPOSE"
    REQUEST = "REQUEST"
    OBSERVE = "OBSERVE"


def is_log_subject(subject: str) -> bool:
    """True if the subject belongs to the observability log namespace"""
    return LOG_TOKEN in subject.split(".")


@dataclass(frozen=True)
class ServiceIdentity:
    name: str
    namespace: str = ""

    def __post_init__(self):
        if not self.name:
            raise ConfigError("name is required to initialize a Service")
        if not isinstance(self.name, str):
            raise ConfigError("name must be a string")
        if self.namespace and not isinstance(self.namespace, str):
            raise ConfigError("namespace must be a string")

    @property
    def full_name(self) -> str:
        return f"{self.namespace}.{self.name}" if self.namespace else self.name

    @property
    def expose_queue(self) -> str:
        return f"{self.full_name}.{EXPOSE_QUEUE_SUFFIX}"

    @property
    def observe_queue(self) -> str:
        return f"{self.full_name}.{OBSERVE_QUEUE_SUFFIX}"

    def expose_subject(self, subject: str) -> str:
        """Subject a method is exposed on: ``<full_name>.<subject>``"""
        return f"{self.full_name}.{subject}"

    def notice_subject(self, subject: str) -> str:
        """Subject a notice is published on: ``<full_name>.<subject>``"""
        return f"{self.full_name}.{subject}"

    def log_subject(self, kind: str, subject: str) -> str:
        """Observability subject: ``<full_name>._LOG.<kind>.<subject>``"""
        return f"{self.full_name}.{LOG_TOKEN}.{kind}.{subject}"
