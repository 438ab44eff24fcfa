"""
typegen/emitter.py - Provenance type emitter

Generates a self-contained Python module of TypedDict declarations for a
protocol. Fields that must equal a specific prior step's output are typed as
``StepOutput[T, Literal[step], Literal[path]]``, both at the response field
that produces the value and at the request field that consumes it:

    class LoginResponse(TypedDict):
        token: StepOutput[str, Literal["login"], Literal["token"]]

    class ProfileRequest(TypedDict):
        token: StepOutput[str, Literal["login"], Literal["token"]]

Static checkers reject a ``StepOutput`` with a different step or path; at
runtime ``require_output``/``check_tags`` raise ``TypeError`` for the same.

Dependent steps get no request declaration: their request schema only exists
once the derivation callable runs against a real response.
"""

from __future__ import annotations
from string import Template
from typing import Any, Dict, List, Mapping, Optional, Set, Tuple, get_args, get_origin
import keyword
import logging
import re

from ..config import EmitterConfig
from ..errors.taxonomy import ProtocolDefinitionError
from ..protocol.graph import topological_sort, validate_protocol
from ..protocol.schemas import PydanticSchema
from ..protocol.steps import MappedStep, Protocol, Step
from .annotations import (
    annotation_to_source,
    is_model,
    quote,
    split_optional,
    strip_annotated,
    UNION_ORIGINS,
)

logger = logging.getLogger(__name__)

Tag = Tuple[str, str]


_PREAMBLE = Template('''\
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, FrozenSet, Generic, List, Literal, NotRequired, Optional, Set, Tuple, TypedDict, TypeVar, Union

_T = TypeVar("_T")
_S = TypeVar("_S", bound=str)
_F = TypeVar("_F", bound=str)


@dataclass(frozen=True)
class $tag(Generic[_T, _S, _F]):
    """Value tagged with the step and response field that produced it."""

    value: _T
    step: str
    field: str


def tag_output(value: _T, step: _S, field: _F) -> $tag[_T, _S, _F]:
    """Tag a value as the output of ``step``'s ``field``."""
    return $tag(value, step, field)


def require_output(candidate: object, step: str, field: str) -> Any:
    """Return the tagged value; reject untagged or differently sourced values."""
    if not isinstance(candidate, $tag):
        raise TypeError(
            f"expected output of {step}.{field}, got untagged {type(candidate).__name__}"
        )
    if candidate.step != step or candidate.field != field:
        raise TypeError(
            f"expected output of {step}.{field}, "
            f"got output of {candidate.step}.{candidate.field}"
        )
    return candidate.value''')


_CHECK_TAGS = '''\
def check_tags(declaration: str, payload: Any) -> None:
    """Assert every tagged field present in ``payload`` carries its declared tag."""
    for path, (step, field) in TAGGED_FIELDS.get(declaration, {}).items():
        current = payload
        for key in path.split("."):
            if not isinstance(current, dict) or key not in current:
                break
            current = current[key]
        else:
            if current is not None:
                require_output(current, step, field)'''


def to_pascal_case(name: str) -> str:
    """``fetch_profile`` -> ``FetchProfile``; ``login`` -> ``Login``."""
    parts = [p for p in re.split(r"[^0-9A-Za-z]+", name) if p]
    result = "".join(p[:1].upper() + p[1:] for p in parts)
    if not result or result[0].isdigit():
        result = f"Step{result}"
    return result


def collect_tagged_outputs(proto: Protocol) -> Dict[str, Set[str]]:
    """Response paths of each step that some mapped step consumes."""
    result: Dict[str, Set[str]] = {}
    for step in proto.steps.values():
        if not isinstance(step, MappedStep):
            continue
        for mapping in step.request_mapping.values():
            result.setdefault(mapping.step, set()).add(mapping.path)
    return result


def _has_descendant_tag(prefix: str, tags: Mapping[str, Tag]) -> bool:
    return any(path.startswith(prefix + ".") for path in tags)


def _typed_dict_source(name: str, props: List[Tuple[str, str]]) -> str:
    if all(key.isidentifier() and not keyword.iskeyword(key) for key, _ in props):
        if not props:
            return f"class {name}(TypedDict):\n    pass"
        body = "\n".join(f"    {key}: {type_src}" for key, type_src in props)
        return f"class {name}(TypedDict):\n{body}"
    entries = "\n".join(f"    {quote(key)}: {type_src}," for key, type_src in props)
    return f"{name} = TypedDict({quote(name)}, {{\n{entries}\n}})"


class ProvenanceTypeEmitter:
    """
    Emits one module of declarations per protocol.

    Declarations are emitted per step in topological order, nested models
    before the declarations that reference them.
    """

    def __init__(self, config: Optional[EmitterConfig] = None):
        self.config = config or EmitterConfig()
        self._blocks: List[str] = []
        # declaration name -> what it was declared from
        self._declared: Dict[str, Any] = {}
        self._tagged_fields: Dict[str, Dict[str, Tag]] = {}

    def generate(self, proto: Protocol) -> str:
        """
        Generate the module source for a protocol.

        Raises:
            ProtocolDefinitionError: if the protocol does not validate
        """
        validation = validate_protocol(proto)
        if not validation.valid:
            raise ProtocolDefinitionError(proto.name, validation.errors)

        self._blocks = []
        self._declared = {}
        self._tagged_fields = {}

        tagged_outputs = collect_tagged_outputs(proto)
        step_blocks: List[str] = []

        for step_name in topological_sort(proto):
            step = proto.steps[step_name]
            start = len(self._blocks)
            pascal = to_pascal_case(step_name)

            if isinstance(step, Step):
                self._declare_schema(f"{pascal}Request", step.request, {})
            elif isinstance(step, MappedStep):
                request_tags = {
                    field_name: (mapping.step, mapping.path)
                    for field_name, mapping in step.request_mapping.items()
                }
                self._declare_schema(f"{pascal}Request", step.request_schema, request_tags)

            paths = sorted(tagged_outputs.get(step_name, set()))
            response_tags = {path: (step_name, path) for path in paths}
            self._declare_schema(f"{pascal}Response", step.response, response_tags)

            blocks = self._blocks[start:]
            if blocks:
                blocks[0] = f"# Step: {step_name}\n{blocks[0]}"
            step_blocks.extend(blocks)

        sections: List[str] = []
        preamble = _PREAMBLE.substitute(tag=self.config.tag_type_name)
        if self.config.header:
            preamble = f"# Generated types for protocol: {proto.name}\n\n{preamble}"
        sections.append(preamble)
        sections.extend(step_blocks)
        if self.config.emit_runtime_checks:
            sections.append(self._tagged_fields_source())
            sections.append(_CHECK_TAGS)

        logger.info(
            f'Generated types for protocol "{proto.name}": {len(self._declared)} declarations, '
            f"{sum(len(v) for v in self._tagged_fields.values())} tagged fields"
        )
        return "\n\n\n".join(sections) + "\n"

    # -------------------------------------------------------------------------
    # Declarations
    # -------------------------------------------------------------------------

    def _tag(self, base: str, tag: Tag) -> str:
        step, path = tag
        return f"{self.config.tag_type_name}[{base}, Literal[{quote(step)}], Literal[{quote(path)}]]"

    def _render(self, annotation: Any, owner: str) -> str:
        return annotation_to_source(
            annotation,
            lambda model: self._declare_object(f"{owner}{model.__name__}", model, {}, None, ""),
        )

    def _claim(self, name: str, origin: Any) -> Tuple[str, bool]:
        """
        Reserve a declaration name for ``origin``.

        Returns the name to use and whether it still has to be emitted. A
        name already declared from a different origin is never reused; a
        numeric suffix is appended instead.
        """
        candidate, suffix = name, 2
        while candidate in self._declared:
            if self._declared[candidate] == origin:
                return candidate, False
            candidate = f"{name}{suffix}"
            suffix += 1
        self._declared[candidate] = origin
        return candidate, True

    def _declare_alias(self, name: str, source: str) -> str:
        name, is_new = self._claim(name, ("alias", source))
        if is_new:
            self._blocks.append(f"{name} = {source}")
        return name

    def _declare_schema(self, name: str, schema: Any, tags: Mapping[str, Tag]) -> str:
        if not isinstance(schema, PydanticSchema):
            logger.warning(f"Cannot introspect schema {schema!r} for {name}; emitting Any")
            declared = self._declare_alias(name, "Any")
            self._warn_unplaced(declared, tags, [])
            return declared

        annotation = strip_annotated(schema.annotation)
        if is_model(annotation):
            declared = self._declare_object(name, annotation, tags, name, "")
            self._warn_unplaced(declared, tags, [declared])
            return declared

        if get_origin(annotation) in UNION_ORIGINS:
            variants = []
            roots = []
            for member in get_args(annotation):
                member = strip_annotated(member)
                if is_model(member):
                    variant_name = f"{name}{member.__name__}"
                    variant = self._declare_object(variant_name, member, tags, variant_name, "")
                    variants.append(variant)
                    roots.append(variant)
                else:
                    variants.append(self._render(member, name))
            declared = self._declare_alias(name, f"Union[{', '.join(variants)}]")
            self._warn_unplaced(declared, tags, roots)
            return declared

        declared = self._declare_alias(name, self._render(annotation, name))
        self._warn_unplaced(declared, tags, [])
        return declared

    def _warn_unplaced(self, name: str, tags: Mapping[str, Tag], roots: List[str]) -> None:
        """Warn about tagged paths that no declaration under ``roots`` carries."""
        placed: Set[str] = set()
        for root in roots:
            placed.update(self._tagged_fields.get(root, {}))
        for path in sorted(set(tags) - placed):
            step, origin = tags[path]
            logger.warning(
                f"Cannot place tag {step}.{origin} on {name}.{path}: "
                f"path does not resolve to a model field; left untagged"
            )

    def _declare_object(
        self,
        name: str,
        model: Any,
        tags: Mapping[str, Tag],
        root: Optional[str],
        prefix: str,
    ) -> str:
        """
        Declare a TypedDict mirroring a pydantic model.

        ``tags`` maps full dot paths (relative to ``root``) to provenance
        tags; nested models are only expanded separately when a descendant
        path is tagged. ``prefix`` is the dot path of this model below
        ``root``, empty for the root declaration itself.
        """
        is_root = root is not None and not prefix
        relevant = {
            path: tag for path, tag in tags.items()
            if not prefix or path.startswith(prefix + ".")
        }
        if relevant:
            origin = ("object", model, None if is_root else root, prefix, frozenset(relevant.items()))
        else:
            origin = ("object", model, None, "", frozenset())

        name, is_new = self._claim(name, origin)
        if not is_new:
            return name
        if is_root:
            root = name

        props: List[Tuple[str, str]] = []
        for key, info in model.model_fields.items():
            path = f"{prefix}.{key}" if prefix else key
            inner, optional = split_optional(info.annotation)

            if path in relevant:
                type_src = self._tag(self._render(inner, name), relevant[path])
                if optional:
                    type_src = f"Optional[{type_src}]"
                if root is not None:
                    self._tagged_fields.setdefault(root, {})[path] = relevant[path]
            elif is_model(inner) and _has_descendant_tag(path, relevant):
                type_src = self._declare_object(
                    f"{name}{to_pascal_case(key)}", inner, relevant, root, path
                )
                if optional:
                    type_src = f"Optional[{type_src}]"
            else:
                type_src = self._render(info.annotation, name)

            if not info.is_required():
                type_src = f"NotRequired[{type_src}]"
            props.append((key, type_src))

        self._blocks.append(_typed_dict_source(name, props))
        return name

    def _tagged_fields_source(self) -> str:
        if not self._tagged_fields:
            return "TAGGED_FIELDS: Dict[str, Dict[str, Tuple[str, str]]] = {}"
        lines = ["TAGGED_FIELDS: Dict[str, Dict[str, Tuple[str, str]]] = {"]
        for declaration, fields in self._tagged_fields.items():
            lines.append(f"    {quote(declaration)}: {{")
            for path, (step, origin_path) in fields.items():
                lines.append(f"        {quote(path)}: ({quote(step)}, {quote(origin_path)}),")
            lines.append("    },")
        lines.append("}")
        return "\n".join(lines)


def generate_protocol_types(proto: Protocol, config: Optional[EmitterConfig] = None) -> str:
    """
    Generate Python declarations with provenance tags for a protocol.

    Raises:
        ProtocolDefinitionError: if the protocol does not validate
    """
    return ProvenanceTypeEmitter(config).generate(proto)
