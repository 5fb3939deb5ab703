# SPDX-FileCopyrightText: 2025 Blackcat Informatics® Inc.
# SPDX-License-Identifier: MIT

"""Model, render and check the e2e-debug Compose definition.

The harness is declarative: a ``node`` service running the debug image
and a ``tester`` service that starts after it. Everything here works on
plain data so the checks can run without a Docker daemon.
"""

from __future__ import annotations

import logging
import re
import shlex
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

import yaml

from witnet_e2e.errors import ComposeError

logger = logging.getLogger(__name__)

COMPOSE_VERSION = "3"
NODE_IMAGE = "witnet/debug-run"
TESTER_IMAGE = "witnet/python-tester"
NODE_PORT = 21337
NODE_HOST_PORT_RANGE = (21337, 22336)
DEFAULT_TEST_NAME = "example"

_NAME_PATTERN = re.compile(r"[_a-zA-Z][_a-zA-Z0-9]*")
_BRACED_PATTERN = re.compile(
    r"^(?P<name>[_a-zA-Z][_a-zA-Z0-9]*)(?:(?P<op>:-|-|:\?|\?)(?P<arg>.*))?$",
    re.DOTALL,
)
_BIND_PREFIXES = ("/", ".", "~", "$")


@dataclass(frozen=True)
class PortMapping:
    container_port: int
    host_start: Optional[int] = None
    host_end: Optional[int] = None
    host_ip: Optional[str] = None
    protocol: str = "tcp"

    @classmethod
    def parse(cls, spec: str) -> "PortMapping":
        """Parse ``[[IP:]HOST[-HOST_END]:]CONTAINER[/PROTO]``."""
        text = str(spec).strip()
        protocol = "tcp"
        if "/" in text:
            text, protocol = text.rsplit("/", 1)
            if protocol not in {"tcp", "udp", "sctp"}:
                raise ComposeError(f"unsupported port protocol in {spec!r}")
        parts = text.split(":")
        if len(parts) > 3 or not parts[-1]:
            raise ComposeError(f"invalid port mapping {spec!r}")
        host_ip = parts[0] if len(parts) == 3 else None
        container_port = _parse_port(parts[-1], spec)
        if len(parts) == 1:
            return cls(container_port=container_port, host_ip=host_ip, protocol=protocol)
        host_part = parts[-2]
        if "-" in host_part:
            start_text, _, end_text = host_part.partition("-")
            host_start = _parse_port(start_text, spec)
            host_end = _parse_port(end_text, spec)
        else:
            host_start = host_end = _parse_port(host_part, spec)
        if host_end < host_start:
            raise ComposeError(f"host port range is reversed in {spec!r}")
        return cls(
            container_port=container_port,
            host_start=host_start,
            host_end=host_end,
            host_ip=host_ip,
            protocol=protocol,
        )

    @property
    def host_ports(self) -> Optional[Tuple[int, int]]:
        if self.host_start is None or self.host_end is None:
            return None
        return self.host_start, self.host_end

    def __str__(self) -> str:
        text = str(self.container_port)
        if self.host_start is not None:
            host = str(self.host_start)
            if self.host_end != self.host_start:
                host = f"{self.host_start}-{self.host_end}"
            if self.host_ip:
                host = f"{self.host_ip}:{host}"
            text = f"{host}:{text}"
        if self.protocol != "tcp":
            text = f"{text}/{self.protocol}"
        return text


@dataclass(frozen=True)
class VolumeMount:
    target: str
    source: Optional[str] = None
    mode: Optional[str] = None

    @classmethod
    def parse(cls, spec: str) -> "VolumeMount":
        parts = _split_unbraced(str(spec), ":")
        if len(parts) == 1:
            return cls(target=parts[0])
        if len(parts) == 2:
            return cls(source=parts[0], target=parts[1])
        if len(parts) == 3:
            return cls(source=parts[0], target=parts[1], mode=parts[2])
        raise ComposeError(f"invalid volume specification {spec!r}")

    @property
    def read_only(self) -> bool:
        return bool(self.mode) and "ro" in self.mode.split(",")

    @property
    def is_bind(self) -> bool:
        return bool(self.source) and self.source.startswith(_BIND_PREFIXES)

    def __str__(self) -> str:
        parts = [part for part in (self.source, self.target, self.mode) if part]
        return ":".join(parts)


@dataclass(frozen=True)
class Service:
    name: str
    image: Optional[str] = None
    command: Tuple[str, ...] = ()
    network_mode: Optional[str] = None
    environment: Mapping[str, Optional[str]] = field(default_factory=dict)
    ports: Tuple[PortMapping, ...] = ()
    volumes: Tuple[VolumeMount, ...] = ()
    depends_on: Tuple[str, ...] = ()

    @property
    def uses_host_network(self) -> bool:
        return self.network_mode == "host"


@dataclass(frozen=True)
class ComposeFile:
    services: Tuple[Service, ...]
    version: Optional[str] = COMPOSE_VERSION

    def service(self, name: str) -> Service:
        for service in self.services:
            if service.name == name:
                return service
        raise ComposeError(f"unknown service {name!r}")

    @property
    def service_names(self) -> List[str]:
        return [service.name for service in self.services]


def e2e_debug_compose() -> ComposeFile:
    """Return the canonical two-service e2e-debug definition."""
    node = Service(
        name="node",
        image=NODE_IMAGE,
        command=("-c", "/witnet/witnet.toml", "node", "server"),
        network_mode="host",
        environment={"RUST_LOG": "witnet=debug"},
        ports=(
            PortMapping(
                container_port=NODE_PORT,
                host_start=NODE_HOST_PORT_RANGE[0],
                host_end=NODE_HOST_PORT_RANGE[1],
            ),
        ),
        volumes=(VolumeMount(source="$PWD", target="/witnet", mode="ro"),),
    )
    tester = Service(
        name="tester",
        image=TESTER_IMAGE,
        command=("${TEST_NAME:-%s}.py" % DEFAULT_TEST_NAME,),
        network_mode="host",
        environment={"PYTHONUNBUFFERED": "1"},
        volumes=(
            VolumeMount(source="$PWD/docker/python-tester", target="/tests", mode="ro"),
            VolumeMount(source="$PWD/examples", target="/requests", mode="ro"),
        ),
        depends_on=("node",),
    )
    return ComposeFile(services=(node, tester), version=COMPOSE_VERSION)


def from_dict(data: Mapping[str, Any]) -> ComposeFile:
    if not isinstance(data, Mapping):
        raise ComposeError("compose document must be a mapping")
    raw_services = data.get("services")
    if not isinstance(raw_services, Mapping) or not raw_services:
        raise ComposeError("compose document defines no services")
    services = [_service_from_dict(name, body or {}) for name, body in raw_services.items()]
    version = data.get("version")
    return ComposeFile(
        services=tuple(services),
        version=str(version) if version is not None else None,
    )


def to_dict(compose: ComposeFile) -> Dict[str, Any]:
    services: Dict[str, Any] = {}
    for service in compose.services:
        body: Dict[str, Any] = {}
        if service.image:
            body["image"] = service.image
        if service.command:
            body["command"] = list(service.command)
        if service.network_mode:
            body["network_mode"] = service.network_mode
        if service.environment:
            body["environment"] = dict(service.environment)
        if service.ports:
            body["ports"] = [str(port) for port in service.ports]
        if service.volumes:
            body["volumes"] = [str(volume) for volume in service.volumes]
        if service.depends_on:
            body["depends_on"] = list(service.depends_on)
        services[service.name] = body
    document: Dict[str, Any] = {}
    if compose.version is not None:
        document["version"] = compose.version
    document["services"] = services
    return document


def render(compose: ComposeFile) -> str:
    return yaml.safe_dump(to_dict(compose), sort_keys=False, default_flow_style=False)


def loads(text: str) -> ComposeFile:
    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as exc:
        raise ComposeError(f"compose file is not valid YAML: {exc}") from exc
    return from_dict(data)


def load(path: Path) -> ComposeFile:
    path = Path(path)
    if not path.exists():
        raise ComposeError(f"compose file not found: {path}")
    logger.debug("loading compose file %s", path)
    return loads(path.read_text())


def interpolate(text: str, env: Mapping[str, str]) -> str:
    """Substitute variables in ``text`` following Compose rules.

    ``$$`` is a literal dollar sign. ``${VAR:-x}`` falls back to ``x`` when
    ``VAR`` is unset or empty while ``${VAR-x}`` only does so when unset.
    ``${VAR:?msg}`` and ``${VAR?msg}`` raise :class:`ComposeError` under the
    same conditions. Unset variables without a default become ``""``.
    Defaults may nest (``${A:-${B:-x}}``); a ``$`` that starts neither a
    name nor a braced expression is rejected.
    """
    out: List[str] = []
    index = 0
    while True:
        start = text.find("$", index)
        if start == -1:
            out.append(text[index:])
            return "".join(out)
        out.append(text[index:start])
        following = text[start + 1:start + 2]
        if following == "$":
            out.append("$")
            index = start + 2
        elif following == "{":
            end = _closing_brace(text, start + 1)
            if end == -1:
                raise ComposeError(f"invalid interpolation format for {text!r}: unclosed '${{'")
            out.append(_substitute_braced(text[start + 2:end], text, env))
            index = end + 1
        else:
            named = _NAME_PATTERN.match(text, start + 1)
            if named is None:
                raise ComposeError(
                    f"invalid interpolation format for {text!r}: '$' at offset {start}"
                )
            out.append(env.get(named.group(0), ""))
            index = named.end()


def _substitute_braced(braced: str, text: str, env: Mapping[str, str]) -> str:
    parsed = _BRACED_PATTERN.match(braced)
    if parsed is None:
        raise ComposeError(f"invalid interpolation format for {text!r}: ${{{braced}}}")
    name, op, arg = parsed.group("name"), parsed.group("op"), parsed.group("arg")
    value = env.get(name)
    if op is None:
        return value or ""
    missing = value is None or (op.startswith(":") and value == "")
    if not missing:
        return value
    if op in {":-", "-"}:
        return interpolate(arg, env)
    message = arg or f"required variable {name} is missing a value"
    raise ComposeError(message)


def _closing_brace(text: str, open_index: int) -> int:
    depth = 0
    for position in range(open_index, len(text)):
        char = text[position]
        if char == "{":
            depth += 1
        elif char == "}":
            depth -= 1
            if depth == 0:
                return position
    return -1


def resolve(compose: ComposeFile, env: Mapping[str, str]) -> ComposeFile:
    """Return a copy of ``compose`` with every variable interpolated."""
    services = []
    for service in compose.services:
        services.append(
            replace(
                service,
                image=interpolate(service.image, env) if service.image else service.image,
                command=tuple(interpolate(arg, env) for arg in service.command),
                environment={
                    key: interpolate(value, env) if value is not None else env.get(key)
                    for key, value in service.environment.items()
                },
                volumes=tuple(
                    VolumeMount(
                        source=interpolate(volume.source, env) if volume.source else None,
                        target=interpolate(volume.target, env),
                        mode=volume.mode,
                    )
                    for volume in service.volumes
                ),
            )
        )
    return replace(compose, services=tuple(services))


def start_order(compose: ComposeFile) -> List[str]:
    """Service names with dependencies first, otherwise in declaration order."""
    known = {service.name: service for service in compose.services}
    ordered: List[str] = []
    visiting: List[str] = []

    def visit(name: str) -> None:
        if name in ordered:
            return
        if name in visiting:
            cycle = " -> ".join(visiting[visiting.index(name):] + [name])
            raise ComposeError(f"dependency cycle: {cycle}")
        visiting.append(name)
        for dependency in known[name].depends_on:
            if dependency not in known:
                raise ComposeError(f"service {name!r} depends on unknown service {dependency!r}")
            visit(dependency)
        visiting.pop()
        ordered.append(name)

    for service in compose.services:
        visit(service.name)
    return ordered


def validate(compose: ComposeFile) -> List[str]:
    problems: List[str] = []
    if compose.version is None:
        problems.append("compose file does not declare a version")
    elif not re.fullmatch(r"3(\.\d+)?", compose.version):
        problems.append(f"compose version {compose.version!r} is not a 3.x version")
    names = compose.service_names
    for service in compose.services:
        if names.count(service.name) > 1:
            problems.append(f"service {service.name!r} is declared more than once")
        if not service.image:
            problems.append(f"service {service.name!r} does not declare an image")
        for dependency in service.depends_on:
            if dependency not in names:
                problems.append(
                    f"service {service.name!r} depends on unknown service {dependency!r}"
                )
        for volume in service.volumes:
            if volume.is_bind and not volume.read_only:
                problems.append(
                    f"service {service.name!r} bind mount {volume} is not read-only"
                )
    # Unknown targets are reported above; cycles are searched among known edges.
    graph = {
        service.name: [dep for dep in service.depends_on if dep in names]
        for service in compose.services
    }
    cycle = _find_cycle(graph)
    if cycle:
        problems.append("dependency cycle: " + " -> ".join(cycle))
    return problems


def _find_cycle(graph: Mapping[str, List[str]]) -> Optional[List[str]]:
    done: set = set()
    path: List[str] = []

    def visit(name: str) -> Optional[List[str]]:
        if name in path:
            return path[path.index(name):] + [name]
        if name in done:
            return None
        path.append(name)
        for dependency in graph.get(name, ()):
            cycle = visit(dependency)
            if cycle:
                return cycle
        path.pop()
        done.add(name)
        return None

    for name in graph:
        cycle = visit(name)
        if cycle:
            return cycle
    return None


def host_port_conflicts(
    compose: ComposeFile,
) -> List[Tuple[str, str, Tuple[int, int]]]:
    published = [
        (service.name, port.host_ports)
        for service in compose.services
        for port in service.ports
        if port.host_ports is not None
    ]
    conflicts = []
    for index, (name_a, range_a) in enumerate(published):
        for name_b, range_b in published[index + 1:]:
            low = max(range_a[0], range_b[0])
            high = min(range_a[1], range_b[1])
            if low <= high:
                conflicts.append((name_a, name_b, (low, high)))
    return conflicts


def reserved_port_collisions(compose: ComposeFile, ports: Iterable[int]) -> List[int]:
    """Ports from ``ports`` that fall inside a published host range."""
    ranges = [
        port.host_ports
        for service in compose.services
        for port in service.ports
        if port.host_ports is not None
    ]
    return sorted(
        {port for port in ports if any(low <= port <= high for low, high in ranges)}
    )


def host_network_ignores_ports(compose: ComposeFile) -> List[str]:
    return [
        service.name
        for service in compose.services
        if service.uses_host_network and service.ports
    ]


def _service_from_dict(name: str, body: Mapping[str, Any]) -> Service:
    if not isinstance(body, Mapping):
        raise ComposeError(f"service {name!r} must be a mapping")
    command = body.get("command") or ()
    if isinstance(command, str):
        command = shlex.split(command)
    depends_on = body.get("depends_on") or ()
    if isinstance(depends_on, Mapping):
        depends_on = list(depends_on)
    return Service(
        name=str(name),
        image=body.get("image"),
        command=tuple(str(arg) for arg in command),
        network_mode=body.get("network_mode"),
        environment=_environment_from(body.get("environment"), name),
        ports=tuple(_port_from(entry) for entry in body.get("ports") or ()),
        volumes=tuple(_volume_from(entry) for entry in body.get("volumes") or ()),
        depends_on=tuple(str(dep) for dep in depends_on),
    )


def _environment_from(raw: Any, service: str) -> Dict[str, Optional[str]]:
    if raw is None:
        return {}
    if isinstance(raw, Mapping):
        return {
            str(key): None if value is None else _scalar_to_str(value)
            for key, value in raw.items()
        }
    if isinstance(raw, list):
        environment: Dict[str, Optional[str]] = {}
        for entry in raw:
            key, sep, value = str(entry).partition("=")
            environment[key] = value if sep else None
        return environment
    raise ComposeError(f"service {service!r} has an invalid environment section")


def _scalar_to_str(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _port_from(entry: Any) -> PortMapping:
    if isinstance(entry, Mapping):
        published = entry.get("published")
        spec = str(entry.get("target", ""))
        if published is not None:
            spec = f"{published}:{spec}"
        if entry.get("host_ip"):
            spec = f"{entry['host_ip']}:{spec}"
        protocol = entry.get("protocol")
        if protocol:
            spec = f"{spec}/{protocol}"
        return PortMapping.parse(spec)
    return PortMapping.parse(str(entry))


def _volume_from(entry: Any) -> VolumeMount:
    if isinstance(entry, Mapping):
        return VolumeMount(
            source=entry.get("source"),
            target=str(entry.get("target", "")),
            mode="ro" if entry.get("read_only") else None,
        )
    return VolumeMount.parse(str(entry))


def _parse_port(text: str, spec: str) -> int:
    try:
        port = int(text)
    except ValueError as exc:
        raise ComposeError(f"invalid port {text!r} in {spec!r}") from exc
    if not 0 < port < 65536:
        raise ComposeError(f"port {port} out of range in {spec!r}")
    return port


def _split_unbraced(text: str, sep: str) -> List[str]:
    parts: List[str] = []
    depth = 0
    current = []
    for char in text:
        if char == "{":
            depth += 1
        elif char == "}" and depth:
            depth -= 1
        if char == sep and depth == 0:
            parts.append("".join(current))
            current = []
            continue
        current.append(char)
    parts.append("".join(current))
    return parts
