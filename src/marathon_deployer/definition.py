"""Loading, merging and rendering of Marathon application definitions."""

from __future__ import annotations

import copy
import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Union

from .config import DeploymentConfig
from .errors import DefinitionFileInvalid, DefinitionFileMissing, DefinitionInvalid
from .paths import DEFAULT_DEFINITION_FILE, DEFAULT_RENDERED_FILE, resolve_in_workspace
from .template import resolve

logger = logging.getLogger(__name__)

ID_FIELD = "id"
CONTAINER_FIELD = "container"
DOCKER_FIELD = "docker"
IMAGE_FIELD = "image"
URIS_FIELD = "uris"
LABELS_FIELD = "labels"
ENV_FIELD = "env"

EMPTY_CONTAINER: Dict[str, Any] = {"type": "DOCKER"}

# injected env key -> host variable it is resolved from
INJECTED_VARIABLES = (
    ("CI_BUILD_NUMBER", "${BUILD_NUMBER}"),
    ("CI_JOB_NAME", "${JOB_NAME}"),
    ("CI_GIT_COMMIT", "${GIT_COMMIT}"),
)


@dataclass(frozen=True)
class ApplicationDefinition:
    """A parsed application definition.

    The wrapped document is never mutated in place; :func:`merge_definition`
    works on a deep copy and returns a new instance.
    """

    document: Dict[str, Any]
    source: Optional[str] = None

    @property
    def app_id(self) -> Optional[str]:
        value = self.document.get(ID_FIELD)
        return str(value) if value is not None else None

    @property
    def docker_image(self) -> Optional[str]:
        container = self.document.get(CONTAINER_FIELD)
        if not isinstance(container, dict):
            return None
        docker = container.get(DOCKER_FIELD)
        if not isinstance(docker, dict):
            return None
        return docker.get(IMAGE_FIELD)

    def copy_document(self) -> Dict[str, Any]:
        return copy.deepcopy(self.document)

    def to_json(self, indent: Optional[int] = None) -> str:
        return json.dumps(self.document, indent=indent)


def parse_definition(content: str, source: Optional[str] = None) -> ApplicationDefinition:
    """Parse `content`, requiring a non-empty top-level JSON object."""
    label = source or "application definition"
    try:
        document = json.loads(content)
    except json.JSONDecodeError as exc:
        raise DefinitionInvalid(f"File '{label}' is not valid JSON: {exc.msg} (line {exc.lineno})") from None
    if not isinstance(document, dict):
        raise DefinitionInvalid(
            f"File '{label}' must contain a JSON object, got {type(document).__name__}"
        )
    if not document:
        raise DefinitionInvalid(f"File '{label}' contains an empty JSON object")
    return ApplicationDefinition(document=document, source=source)


def load_definition(
    workspace: Union[str, Path], filename: Optional[str] = None
) -> ApplicationDefinition:
    real_filename = filename if filename and filename.strip() else DEFAULT_DEFINITION_FILE
    path = resolve_in_workspace(workspace, real_filename)

    if not path.exists():
        raise DefinitionFileMissing(real_filename)
    if not path.is_file():
        raise DefinitionFileInvalid(f"File '{real_filename}' is a directory.")

    logger.debug("Reading application definition from %s", path)
    return parse_definition(path.read_text(encoding="utf-8"), source=real_filename)


def merge_definition(
    definition: ApplicationDefinition,
    config: DeploymentConfig,
    variables: Optional[Mapping[str, str]] = None,
) -> ApplicationDefinition:
    """Apply `config` overrides to `definition` and return the merged result.

    Order: id, docker image, URIs (replaced), labels (merged), variables.
    """
    document = definition.copy_document()
    _replace_app_id(document, config, variables)
    _replace_docker_image(document, config, variables)
    _replace_uris(document, config, variables)
    _merge_labels(document, config, variables)
    _inject_variables(document, config, variables)
    return ApplicationDefinition(document=document, source=definition.source)


def _replace_app_id(
    document: Dict[str, Any], config: DeploymentConfig, variables: Optional[Mapping[str, str]]
) -> None:
    if not config.app_id or not config.app_id.strip():
        return
    previous_id = document.get(ID_FIELD)
    new_id = resolve(config.app_id, variables)
    logger.info("Replacing Application ID: [%s] => [%s]", previous_id, new_id)
    document[ID_FIELD] = new_id


def _replace_docker_image(
    document: Dict[str, Any], config: DeploymentConfig, variables: Optional[Mapping[str, str]]
) -> None:
    if not config.docker_image or not config.docker_image.strip():
        return
    if not isinstance(document.get(CONTAINER_FIELD), dict):
        document[CONTAINER_FIELD] = dict(EMPTY_CONTAINER)
    container = document[CONTAINER_FIELD]
    if not isinstance(container.get(DOCKER_FIELD), dict):
        container[DOCKER_FIELD] = {}
    docker = container[DOCKER_FIELD]

    previous_image = docker.get(IMAGE_FIELD)
    new_image = resolve(config.docker_image, variables)
    logger.info("Replacing Docker Image: [%s] => [%s]", previous_image, new_image)
    docker[IMAGE_FIELD] = new_image


def _replace_uris(
    document: Dict[str, Any], config: DeploymentConfig, variables: Optional[Mapping[str, str]]
) -> None:
    # the configured list is authoritative, prior URIs are discarded
    document[URIS_FIELD] = [resolve(uri, variables) for uri in config.uris]


def _merge_labels(
    document: Dict[str, Any], config: DeploymentConfig, variables: Optional[Mapping[str, str]]
) -> None:
    if not isinstance(document.get(LABELS_FIELD), dict):
        document[LABELS_FIELD] = {}
    labels = document[LABELS_FIELD]
    for label in config.labels:
        labels[resolve(label.name, variables)] = resolve(label.value, variables)


def _inject_variables(
    document: Dict[str, Any], config: DeploymentConfig, variables: Optional[Mapping[str, str]]
) -> None:
    if not config.inject_variables and not config.env:
        return
    if not isinstance(document.get(ENV_FIELD), dict):
        document[ENV_FIELD] = {}
    env = document[ENV_FIELD]

    for entry in config.env:
        env[resolve(entry.name, variables)] = resolve(entry.value, variables)

    if config.inject_variables:
        logger.info("Injecting host environment variables")
        for key, template in INJECTED_VARIABLES:
            value = resolve(template, variables)
            env[key] = value
            logger.info("Injecting: [%s] as [%s]", key, value)


def write_rendered(
    definition: ApplicationDefinition,
    workspace: Union[str, Path],
    filename: Optional[str] = None,
    variables: Optional[Mapping[str, str]] = None,
) -> Path:
    """Write `definition` to the rendered-output file and return its path."""
    real_filename = filename if filename else DEFAULT_RENDERED_FILE
    path = resolve_in_workspace(workspace, resolve(real_filename, variables) or real_filename)
    if path.exists() and path.is_dir():
        raise DefinitionFileInvalid(f"File '{real_filename}' is a directory; not overwriting.")

    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(definition.to_json(), encoding="utf-8")
    logger.info("Wrote rendered application definition to %s", path)
    return path
