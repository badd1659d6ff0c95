"""vkbind header generator.

Builds vkbind.h, a single-file Vulkan loader, from the Khronos vk.xml
registry and the loader template in source/vkbind_template.h.

Usage:
    python vkbind_gen.py
    python vkbind_gen.py --vk-xml resources/vk.xml --output vkbind.h --no-download
"""

import os
import argparse
import re
import subprocess
import xml.etree.ElementTree as ET
from collections.abc import Callable, Iterable, Iterator
from dataclasses import dataclass, field
from datetime import date
from pathlib import Path
from typing import ClassVar, NamedTuple

PROJECT_ROOT = Path(__file__).resolve().parent
DEFAULT_VK_XML = PROJECT_ROOT / "resources" / "vk.xml"
DEFAULT_TEMPLATE = PROJECT_ROOT / "source" / "vkbind_template.h"
DEFAULT_OUTPUT = PROJECT_ROOT / "vkbind.h"
VK_XML_URL = "https://raw.githubusercontent.com/KhronosGroup/Vulkan-Docs/main/xml/vk.xml"
MAX_INPUT_BYTES = 256 * 1024 * 1024


# ===--- CLI config contracts ---=== #


@dataclass(frozen=True)
class GenerateConfig:
    vk_xml: Path
    template: Path
    output: Path
    download: bool = True
    dump: bool = False


EXIT_CODES = {
    "INVALID_ARGS": 2,
    "OUT_OF_MEMORY": 3,
    "FILE_TOO_BIG": 4,
    "FAILED_TO_OPEN_FILE": 5,
    "FAILED_TO_READ_FILE": 6,
    "FAILED_TO_WRITE_FILE": 7,
    "DOWNLOAD_FAILED": 8,
    "INVALID_REGISTRY": 9,
    "UNRESOLVED_PLACEHOLDER": 10,
}
VALID_ERROR_CODES = set(EXIT_CODES)


class GeneratorError(Exception):
    def __init__(self, code: str, message: str, suggestion: str | None = None):
        if code not in VALID_ERROR_CODES:
            raise ValueError(f"Unknown generator error code: {code}")
        super().__init__(message)
        self.code = code
        self.message = message
        self.suggestion = suggestion

    @property
    def exit_code(self) -> int:
        """Process exit status reported for this error class."""
        return EXIT_CODES[self.code]


def build_argument_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Generate the vkbind Vulkan loader header from vk.xml"
    )

    parser.add_argument("--vk-xml", type=Path, default=DEFAULT_VK_XML)
    parser.add_argument("--template", type=Path, default=DEFAULT_TEMPLATE)
    parser.add_argument("--output", type=Path, default=DEFAULT_OUTPUT)
    parser.add_argument("--no-download", action="store_true", default=False)
    parser.add_argument("--dump", action="store_true", default=False)

    return parser


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = build_argument_parser()
    return parser.parse_args(argv)


def validate_config(args: argparse.Namespace) -> GenerateConfig:
    """Turn parsed CLI arguments into a GenerateConfig.

    The registry path is not checked here because a missing vk.xml is
    downloaded at generation time.

    Raises:
        GeneratorError: INVALID_ARGS when the template is missing or the
            output path names a directory.
    """
    if not args.template.is_file():
        raise GeneratorError(
            "INVALID_ARGS",
            f"Template not found: {args.template}",
            "Pass an existing template: --template source/vkbind_template.h",
        )
    if args.output.is_dir():
        raise GeneratorError(
            "INVALID_ARGS",
            f"Output path is a directory: {args.output}",
            "Pass a file path for the generated header: --output vkbind.h",
        )

    return GenerateConfig(
        vk_xml=args.vk_xml,
        template=args.template,
        output=args.output,
        download=not args.no_download,
        dump=bool(args.dump),
    )


def build_config(argv: list[str] | None = None) -> GenerateConfig:
    return validate_config(parse_args(argv))


# ===--- File I/O ---=== #


@dataclass(frozen=True)
class FileWriteResult:
    """Result of writing the generated header.

    Attributes:
        path: Absolute path of the written file.
        line_count: Number of newline characters in the written content.
        byte_count: Number of bytes written (UTF-8 encoded).
    """

    path: Path
    line_count: int
    byte_count: int


def read_text_file(path: Path, max_bytes: int = MAX_INPUT_BYTES) -> str:
    """Read a whole UTF-8 text file, refusing files above max_bytes.

    Line endings are returned untouched so a re-read of generated output
    compares byte for byte with freshly rendered text.

    Args:
        path: File to read.
        max_bytes: Upper bound on the file size.

    Returns:
        Decoded file content.

    Raises:
        GeneratorError: FAILED_TO_OPEN_FILE, FILE_TOO_BIG, OUT_OF_MEMORY or
            FAILED_TO_READ_FILE.
    """
    try:
        handle = open(path, "rb")
    except OSError as err:
        raise GeneratorError(
            "FAILED_TO_OPEN_FILE",
            f"Failed to open {path}: {err.strerror or err}",
        ) from err

    with handle:
        try:
            size = os.fstat(handle.fileno()).st_size
        except OSError as err:
            raise GeneratorError(
                "FAILED_TO_READ_FILE", f"Failed to stat {path}: {err}"
            ) from err
        if size > max_bytes:
            raise GeneratorError(
                "FILE_TOO_BIG",
                f"{path} is {size} bytes, the limit is {max_bytes} bytes.",
            )
        try:
            data = handle.read()
        except MemoryError as err:
            raise GeneratorError(
                "OUT_OF_MEMORY", f"Out of memory while reading {path}."
            ) from err
        except OSError as err:
            raise GeneratorError(
                "FAILED_TO_READ_FILE", f"Failed to read {path}: {err}"
            ) from err

    if len(data) < size:
        raise GeneratorError(
            "FAILED_TO_READ_FILE",
            f"Short read on {path}: got {len(data)} of {size} bytes.",
        )
    try:
        return data.decode("utf-8")
    except UnicodeDecodeError as err:
        raise GeneratorError(
            "FAILED_TO_READ_FILE", f"{path} is not valid UTF-8: {err}"
        ) from err


def write_output(path: Path, content: str) -> FileWriteResult:
    """Write the generated header, creating parent directories as needed.

    Raises:
        GeneratorError: FAILED_TO_OPEN_FILE or FAILED_TO_WRITE_FILE.
    """
    path = Path(path)
    data = content.encode("utf-8")
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        handle = open(path, "wb")
    except OSError as err:
        raise GeneratorError(
            "FAILED_TO_OPEN_FILE",
            f"Failed to open {path} for writing: {err.strerror or err}",
        ) from err

    with handle:
        try:
            handle.write(data)
        except OSError as err:
            raise GeneratorError(
                "FAILED_TO_WRITE_FILE", f"Failed to write {path}: {err}"
            ) from err

    return FileWriteResult(
        path=path.resolve(),
        line_count=content.count("\n"),
        byte_count=len(data),
    )


def download_registry(path: Path, url: str = VK_XML_URL) -> None:
    """Fetch vk.xml with one blocking curl call. No retry."""
    print("vk.xml not found. Attempting to download...")
    hint = f"Download {url} manually and pass it with --vk-xml."
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
    except OSError as err:
        raise GeneratorError(
            "DOWNLOAD_FAILED", f"Cannot create {path.parent}: {err}", hint
        ) from err
    try:
        subprocess.run(["curl", "--fail", "-L", "-o", str(path), url], check=True)
    except FileNotFoundError as err:
        raise GeneratorError(
            "DOWNLOAD_FAILED", "curl is not installed; cannot download vk.xml.", hint
        ) from err
    except subprocess.CalledProcessError as err:
        raise GeneratorError(
            "DOWNLOAD_FAILED",
            f"curl exited with status {err.returncode} while downloading vk.xml.",
            hint,
        ) from err
    if not path.is_file():
        raise GeneratorError(
            "DOWNLOAD_FAILED", f"Download finished but {path} does not exist.", hint
        )


def parse_registry_document(text: str) -> ET.Element:
    try:
        root = ET.fromstring(text)
    except ET.ParseError as err:
        raise GeneratorError(
            "INVALID_REGISTRY",
            f"Failed to parse vk.xml: {err}",
            "Delete the file to download a fresh copy.",
        ) from err
    if root.tag != "registry":
        raise GeneratorError(
            "INVALID_REGISTRY",
            f'Unexpected root node. Expecting "registry", but got "{root.tag}".',
        )
    return root


# ===--- Registry model ---=== #


LEGACY_PLATFORMS = {"mir"}


@dataclass(frozen=True)
class Platform:
    name: str
    protect: str


@dataclass(frozen=True)
class Tag:
    name: str
    author: str = ""
    contact: str = ""


class TypeNamePair(NamedTuple):
    """A declaration split into its C spelling and bare lookup names.

    `const <type>void</type>* <name>pData</name>` becomes
    type_c="const void*", type_name="void", name_c="pData", name="pData".
    """

    type_c: str
    type_name: str
    name_c: str
    name: str
    array_enum: str


@dataclass(frozen=True)
class FunctionParameter:
    type_c: str
    type_name: str
    name_c: str
    name: str
    array_enum: str = ""
    optional: str = ""
    externsync: str = ""
    length: str = ""


@dataclass(frozen=True)
class StructMember:
    type_c: str
    type_name: str
    name_c: str
    name: str
    array_enum: str = ""
    comment: str = ""
    values: str = ""
    optional: str = ""
    noautovalidity: str = ""
    length: str = ""


@dataclass(frozen=True)
class RegistryType:
    """Fields shared by every <type> variant.

    `category` is a class-level tag mirroring the vk.xml category attribute.
    """

    category: ClassVar[str] = ""

    name: str
    alias: str = ""
    requires: str = ""
    bitvalues: str = ""


@dataclass(frozen=True)
class ExternalType(RegistryType):
    """A C or platform type declared without a category (int, Display, ...)."""


@dataclass(frozen=True)
class IncludeType(RegistryType):
    category: ClassVar[str] = "include"


@dataclass(frozen=True)
class DefineType(RegistryType):
    category: ClassVar[str] = "define"

    type_name: str = ""
    verbatim: str = ""


@dataclass(frozen=True)
class BaseType(RegistryType):
    category: ClassVar[str] = "basetype"

    type_name: str = ""
    verbatim: str = ""


@dataclass(frozen=True)
class HandleType(RegistryType):
    category: ClassVar[str] = "handle"

    type_name: str = ""
    parent: str = ""


@dataclass(frozen=True)
class BitmaskType(RegistryType):
    category: ClassVar[str] = "bitmask"

    type_name: str = ""


@dataclass(frozen=True)
class EnumType(RegistryType):
    category: ClassVar[str] = "enum"


@dataclass(frozen=True)
class FuncPointerType(RegistryType):
    category: ClassVar[str] = "funcpointer"

    return_type_c: str = ""
    return_type: str = ""
    params: tuple[FunctionParameter, ...] = ()


@dataclass(frozen=True)
class StructType(RegistryType):
    category: ClassVar[str] = "struct"

    members: tuple[StructMember, ...] = ()
    returnedonly: str = ""


@dataclass(frozen=True)
class UnionType(StructType):
    category: ClassVar[str] = "union"


@dataclass(frozen=True)
class EnumValue:
    name: str
    alias: str = ""
    value: str = ""
    bitpos: str = ""
    comment: str = ""


@dataclass(frozen=True)
class EnumGroup:
    """One <enums> block.

    kind is "enum", "bitmask" or "" for define-style constants. Define-style
    blocks are split so that each constant is its own single-value group.
    """

    name: str
    kind: str = ""
    values: tuple[EnumValue, ...] = ()
    bitwidth: int = 32
    comment: str = ""


@dataclass(frozen=True)
class Command:
    name: str
    return_type_c: str = ""
    return_type: str = ""
    params: tuple[FunctionParameter, ...] = ()
    alias: str = ""
    successcodes: tuple[str, ...] = ()
    errorcodes: tuple[str, ...] = ()


@dataclass(frozen=True)
class RequireEnum:
    name: str
    alias: str = ""
    value: str = ""
    extends: str = ""
    bitpos: str = ""
    extnumber: str = ""
    offset: str = ""
    comment: str = ""
    direction: str = ""


@dataclass(frozen=True)
class Require:
    feature: str = ""
    extension: str = ""
    depends: str = ""
    comment: str = ""
    types: tuple[str, ...] = ()
    enums: tuple[RequireEnum, ...] = ()
    commands: tuple[str, ...] = ()


@dataclass(frozen=True)
class Feature:
    api: str
    name: str
    number: str
    comment: str = ""
    requires: tuple[Require, ...] = ()


@dataclass(frozen=True)
class Extension:
    name: str
    number: str = ""
    ext_type: str = ""
    depends: str = ""
    platform: str = ""
    author: str = ""
    contact: str = ""
    supported: str = ""
    promotedto: str = ""
    deprecatedby: str = ""
    requires: tuple[Require, ...] = ()


def _first_wins(items: Iterable, key: Callable) -> dict:
    index = {}
    for item in items:
        index.setdefault(key(item), item)
    return index


class Registry:
    """Everything parsed from vk.xml, read-only once built.

    Name lookups return the first declaration of a name. Extension order is
    significant and is only changed by building a new Registry through
    with_extensions().
    """

    def __init__(
        self,
        platforms: Iterable[Platform] = (),
        tags: Iterable[Tag] = (),
        types: Iterable[RegistryType] = (),
        enum_groups: Iterable[EnumGroup] = (),
        commands: Iterable[Command] = (),
        features: Iterable[Feature] = (),
        extensions: Iterable[Extension] = (),
    ):
        self.platforms = tuple(platforms)
        self.tags = tuple(tags)
        self.types = tuple(types)
        self.enum_groups = tuple(enum_groups)
        self.commands = tuple(commands)
        self.features = tuple(features)
        self.extensions = tuple(extensions)

        self._types = _first_wins(self.types, lambda t: t.name)
        self._groups = _first_wins(self.enum_groups, lambda g: g.name)
        self._commands = _first_wins(self.commands, lambda c: c.name)
        self._group_values: dict[str, EnumValue] = {}
        for group in self.enum_groups:
            for value in group.values:
                self._group_values.setdefault(value.name, value)

        self._flags_types: dict[str, BitmaskType] = {}
        for t in self.types:
            if isinstance(t, BitmaskType) and not t.alias:
                group_name = t.requires or t.bitvalues
                if group_name:
                    self._flags_types.setdefault(group_name, t)

        self._extenders: dict[str, list[tuple[RequireEnum, str]]] = {}
        self._require_values: dict[str, tuple[RequireEnum, str]] = {}
        for req_enum, owner_number in self.iter_require_enums():
            if req_enum.extends:
                self._extenders.setdefault(req_enum.extends, []).append(
                    (req_enum, owner_number)
                )
            if req_enum.value or req_enum.bitpos or req_enum.alias or req_enum.offset:
                self._require_values.setdefault(req_enum.name, (req_enum, owner_number))

    def find_type(self, name: str) -> RegistryType | None:
        return self._types.get(name)

    def find_enum_group(self, name: str) -> EnumGroup | None:
        return self._groups.get(name)

    def find_command(self, name: str) -> Command | None:
        return self._commands.get(name)

    def find_group_value(self, name: str) -> EnumValue | None:
        return self._group_values.get(name)

    def find_flags_type(self, group_name: str) -> BitmaskType | None:
        """Bitmask type whose values live in the FlagBits group `group_name`."""
        return self._flags_types.get(group_name)

    def find_require_value(self, name: str) -> tuple[RequireEnum, str] | None:
        """First feature/extension enum named `name` that carries a value."""
        return self._require_values.get(name)

    def canonical_command(self, name: str) -> Command | None:
        """Follow a command's alias chain to the declaration with a signature."""
        command = self.find_command(name)
        seen: set[str] = set()
        while command is not None and command.alias and command.name not in seen:
            seen.add(command.name)
            target = self.find_command(command.alias)
            if target is None:
                break
            command = target
        return command

    def iter_require_enums(self) -> Iterator[tuple[RequireEnum, str]]:
        """Yield every require-block enum with its owning extension number.

        Features come first (owner number ""), then extensions in their
        current order.
        """
        for feature in self.features:
            for require in feature.requires:
                for req_enum in require.enums:
                    yield req_enum, ""
        for extension in self.extensions:
            for require in extension.requires:
                for req_enum in require.enums:
                    yield req_enum, extension.number

    def extenders(self, group_name: str) -> tuple[tuple[RequireEnum, str], ...]:
        return tuple(self._extenders.get(group_name, ()))

    def with_extensions(self, extensions: Iterable[Extension]) -> "Registry":
        return Registry(
            platforms=self.platforms,
            tags=self.tags,
            types=self.types,
            enum_groups=self.enum_groups,
            commands=self.commands,
            features=self.features,
            extensions=extensions,
        )


# ===--- XML parsing ---=== #


def _attr(element: ET.Element, name: str) -> str:
    return (element.get(name) or "").strip()


def _supports_vulkan_api(api_value: str) -> bool:
    """Return True when a comma-separated api/supported value includes vulkan.

    Args:
        api_value: Raw vk.xml API selector value.

    Returns:
        True when `vulkan` is present as one of the comma-separated values.
    """
    return any(token.strip() == "vulkan" for token in api_value.split(","))


def _is_vulkan(element: ET.Element) -> bool:
    api = element.get("api")
    return api is None or _supports_vulkan_api(api)


def _iter_nodes(element: ET.Element) -> Iterator[tuple[ET.Element | None, str]]:
    """Walk an element's mixed content as (child, text) pairs.

    Text runs come back with child=None. Child elements come back with
    their own text.
    """
    if element.text:
        yield None, element.text
    for child in element:
        yield child, child.text or ""
        if child.tail:
            yield None, child.tail


def parse_type_name_pair(element: ET.Element) -> TypeNamePair:
    """Rebuild a declaration that vk.xml splits across sibling nodes.

    Everything before <name> is the C type; <type> inside it is the lookup
    name. From <name> up to an optional <comment> is the C name, which may
    carry an array suffix whose <enum> gives the array length constant.
    """
    type_c: list[str] = []
    name_c: list[str] = []
    type_name = ""
    name = ""
    array_enum = ""
    in_name = False

    for child, text in _iter_nodes(element):
        tag = child.tag if child is not None else None
        if not in_name and tag != "name":
            if tag == "type":
                type_name = text
            type_c.append(text)
            continue
        in_name = True
        if tag == "comment":
            break
        if tag == "enum":
            array_enum = text
        elif tag == "name":
            name = text
        name_c.append(text)

    return TypeNamePair(
        type_c="".join(type_c).strip(),
        type_name=type_name.strip(),
        name_c="".join(name_c).strip(),
        name=name.strip(),
        array_enum=array_enum.strip(),
    )


def parse_struct_member(element: ET.Element) -> StructMember:
    pair = parse_type_name_pair(element)
    comment_el = element.find("comment")
    comment = (comment_el.text or "").strip() if comment_el is not None else ""
    return StructMember(
        **pair._asdict(),
        comment=comment,
        values=_attr(element, "values"),
        optional=_attr(element, "optional"),
        noautovalidity=_attr(element, "noautovalidity"),
        length=_attr(element, "len"),
    )


def parse_function_parameter(element: ET.Element) -> FunctionParameter:
    pair = parse_type_name_pair(element)
    return FunctionParameter(
        **pair._asdict(),
        optional=_attr(element, "optional"),
        externsync=_attr(element, "externsync"),
        length=_attr(element, "len"),
    )


def _funcpointer_return_type(text: str) -> str:
    # "typedef void* (VKAPI_PTR *" -> "void*"
    text = text.strip()
    if text.startswith("typedef "):
        text = text[len("typedef ") :]
    end = text.find("(VKAPI_PTR")
    if end >= 0:
        text = text[:end]
    return text.strip()


def _bare_type_name(type_c: str) -> str:
    words = type_c.replace("*", " ").split()
    return " ".join(word for word in words if word != "const")


_PARAM_SPLIT_RE = re.compile(r"^(.*)\s(\S+)$", re.DOTALL)
_PARAM_TYPE_RE = re.compile(r"<type>(.*?)</type>", re.DOTALL)


def split_funcpointer_params(param_text: str) -> tuple[FunctionParameter, ...]:
    """Split a serialized funcpointer parameter list into parameters.

    param_text is the pseudo-tagged text following the funcpointer name, for
    example `)(<type>uint32_t</type> count, const <type>void</type>* pData);`.
    Each comma-separated segment is split at its last whitespace run.
    """
    cleaned = param_text.replace(")(", "").replace(");", "")
    params: list[FunctionParameter] = []
    for raw in cleaned.split(","):
        segment = raw.strip()
        if not segment or segment == "void":
            continue
        match = _PARAM_SPLIT_RE.match(segment)
        if match is None:
            continue
        type_part = match.group(1).strip()
        name = match.group(2).strip()
        type_match = _PARAM_TYPE_RE.search(type_part)
        params.append(
            FunctionParameter(
                type_c=type_part.replace("<type>", "").replace("</type>", ""),
                type_name=type_match.group(1).strip() if type_match else "",
                name_c=name,
                name=name,
            )
        )
    return tuple(params)


def _serialize_after_name(element: ET.Element) -> str:
    parts: list[str] = []
    seen_name = False
    for child, text in _iter_nodes(element):
        if not seen_name:
            seen_name = child is not None and child.tag == "name"
            continue
        if child is None:
            parts.append(text)
        else:
            parts.append(f"<{child.tag}>{text}</{child.tag}>")
    return "".join(parts)


def parse_funcpointer(element: ET.Element, alias: str, requires: str) -> FuncPointerType:
    proto = element.find("proto")
    if proto is not None:
        pair = parse_type_name_pair(proto)
        return_type_c = _funcpointer_return_type(pair.type_c)
        params = tuple(
            parse_function_parameter(p)
            for p in element.findall("param")
            if _is_vulkan(p)
        )
    else:
        pair = parse_type_name_pair(element)
        return_type_c = _funcpointer_return_type(pair.type_c)
        params = split_funcpointer_params(_serialize_after_name(element))

    return FuncPointerType(
        name=pair.name or _attr(element, "name"),
        alias=alias,
        requires=requires,
        return_type_c=return_type_c,
        return_type=_bare_type_name(return_type_c),
        params=params,
    )


def _parse_verbatim(element: ET.Element) -> tuple[str, str, str]:
    """Flatten a define/basetype body to C text plus its <name> and <type>."""
    verbatim = ""
    name = ""
    type_name = ""
    for child, text in _iter_nodes(element):
        if child is None:
            verbatim += text
            continue
        if child.tag == "name":
            name = text.strip()
        elif child.tag == "type":
            type_name = text.strip()
        if not text:
            continue
        if verbatim and not verbatim.endswith(" "):
            verbatim += " "
        verbatim += text
    return verbatim, name, type_name


def parse_type(element: ET.Element) -> RegistryType | None:
    category = _attr(element, "category")
    name = _attr(element, "name")
    alias = _attr(element, "alias")
    requires = _attr(element, "requires")
    bitvalues = _attr(element, "bitvalues")

    if category == "funcpointer":
        return parse_funcpointer(element, alias, requires)

    if category in ("define", "basetype"):
        verbatim, inner_name, type_name = _parse_verbatim(element)
        cls = DefineType if category == "define" else BaseType
        return cls(
            name=inner_name or name,
            alias=alias,
            requires=requires,
            bitvalues=bitvalues,
            type_name=type_name,
            verbatim=verbatim,
        )

    if category in ("handle", "bitmask"):
        type_el = element.find("type")
        name_el = element.find("name")
        if name_el is not None and name_el.text:
            name = name_el.text.strip()
        type_name = (type_el.text or "").strip() if type_el is not None else ""
        if category == "handle":
            return HandleType(
                name=name,
                alias=alias,
                requires=requires,
                bitvalues=bitvalues,
                type_name=type_name,
                parent=_attr(element, "parent"),
            )
        return BitmaskType(
            name=name,
            alias=alias,
            requires=requires,
            bitvalues=bitvalues,
            type_name=type_name,
        )

    if category in ("struct", "union"):
        members = tuple(
            parse_struct_member(m) for m in element.findall("member") if _is_vulkan(m)
        )
        cls = StructType if category == "struct" else UnionType
        return cls(
            name=name,
            alias=alias,
            requires=requires,
            bitvalues=bitvalues,
            members=members,
            returnedonly=_attr(element, "returnedonly"),
        )

    if category == "enum":
        return EnumType(name=name, alias=alias, requires=requires, bitvalues=bitvalues)

    if category == "include":
        if not name:
            name_el = element.find("name")
            name = (name_el.text or "").strip() if name_el is not None else ""
        return IncludeType(name=name, alias=alias, requires=requires)

    if category == "":
        return ExternalType(name=name, alias=alias, requires=requires, bitvalues=bitvalues)

    return None


def parse_types(types_el: ET.Element) -> list[RegistryType]:
    types = []
    for element in types_el:
        if element.tag != "type" or not _is_vulkan(element):
            continue
        parsed = parse_type(element)
        if parsed is not None and parsed.name:
            types.append(parsed)
    return types


def parse_enum_groups(enums_el: ET.Element) -> list[EnumGroup]:
    kind = _attr(enums_el, "type")
    if kind == "constants":
        kind = ""
    try:
        bitwidth = int(enums_el.get("bitwidth", "32"))
    except ValueError:
        bitwidth = 32

    values = [
        EnumValue(
            name=_attr(child, "name"),
            alias=_attr(child, "alias"),
            value=_attr(child, "value"),
            bitpos=_attr(child, "bitpos"),
            comment=_attr(child, "comment"),
        )
        for child in enums_el.findall("enum")
        if _is_vulkan(child)
    ]

    if not kind:
        return [EnumGroup(name=value.name, values=(value,)) for value in values]
    return [
        EnumGroup(
            name=_attr(enums_el, "name"),
            kind=kind,
            values=tuple(values),
            bitwidth=bitwidth,
            comment=_attr(enums_el, "comment"),
        )
    ]


def _split_codes(value: str) -> tuple[str, ...]:
    return tuple(code.strip() for code in value.split(",") if code.strip())


def parse_command(element: ET.Element) -> Command:
    return_type_c = ""
    return_type = ""
    name = ""
    proto = element.find("proto")
    if proto is not None:
        pair = parse_type_name_pair(proto)
        return_type_c, return_type, name = pair.type_c, pair.type_name, pair.name

    params = tuple(
        parse_function_parameter(p) for p in element.findall("param") if _is_vulkan(p)
    )
    return Command(
        name=_attr(element, "name") or name,
        return_type_c=return_type_c,
        return_type=return_type,
        params=params,
        alias=_attr(element, "alias"),
        successcodes=_split_codes(element.get("successcodes", "")),
        errorcodes=_split_codes(element.get("errorcodes", "")),
    )


def parse_commands(commands_el: ET.Element) -> list[Command]:
    commands = []
    for element in commands_el.findall("command"):
        if not _is_vulkan(element):
            continue
        command = parse_command(element)
        if command.name:
            commands.append(command)
    return commands


def parse_require(element: ET.Element) -> Require:
    types: list[str] = []
    enums: list[RequireEnum] = []
    commands: list[str] = []
    for child in element:
        name = _attr(child, "name")
        if not name or not _is_vulkan(child):
            continue
        if child.tag == "type":
            types.append(name)
        elif child.tag == "enum":
            enums.append(
                RequireEnum(
                    name=name,
                    alias=_attr(child, "alias"),
                    value=_attr(child, "value"),
                    extends=_attr(child, "extends"),
                    bitpos=_attr(child, "bitpos"),
                    extnumber=_attr(child, "extnumber"),
                    offset=_attr(child, "offset"),
                    comment=_attr(child, "comment"),
                    direction=_attr(child, "dir"),
                )
            )
        elif child.tag == "command":
            commands.append(name)

    return Require(
        feature=_attr(element, "feature"),
        extension=_attr(element, "extension"),
        depends=_attr(element, "depends"),
        comment=element.get("comment", ""),
        types=tuple(types),
        enums=tuple(enums),
        commands=tuple(commands),
    )


def _parse_requires(element: ET.Element) -> tuple[Require, ...]:
    return tuple(
        parse_require(r) for r in element.findall("require") if _is_vulkan(r)
    )


def parse_feature(element: ET.Element) -> Feature | None:
    if not _is_vulkan(element):
        return None
    return Feature(
        api=_attr(element, "api"),
        name=_attr(element, "name"),
        number=_attr(element, "number"),
        comment=element.get("comment", ""),
        requires=_parse_requires(element),
    )


def parse_extension(element: ET.Element) -> Extension | None:
    """Parse one <extension>, or return None when it is not emitted at all.

    Disabled and vulkansc-only extensions are dropped, and so are extensions
    for legacy platforms.
    """
    if not _supports_vulkan_api(_attr(element, "supported")):
        return None
    platform = _attr(element, "platform")
    if platform in LEGACY_PLATFORMS:
        return None
    return Extension(
        name=_attr(element, "name"),
        number=_attr(element, "number"),
        ext_type=_attr(element, "type"),
        depends=_attr(element, "depends") or _attr(element, "requires"),
        platform=platform,
        author=_attr(element, "author"),
        contact=_attr(element, "contact"),
        supported=_attr(element, "supported"),
        promotedto=_attr(element, "promotedto"),
        deprecatedby=_attr(element, "deprecatedby"),
        requires=_parse_requires(element),
    )


def parse_extensions(extensions_el: ET.Element) -> list[Extension]:
    extensions: list[Extension] = []
    for element in extensions_el.findall("extension"):
        extension = parse_extension(element)
        if extension is None:
            continue
        extensions.append(extension)
        # An extension deprecated by this one moves behind it.
        for index, earlier in enumerate(extensions[:-1]):
            if earlier.deprecatedby == extension.name:
                extensions.append(extensions.pop(index))
                break
    return extensions


def parse_platforms(platforms_el: ET.Element) -> list[Platform]:
    return [
        Platform(name=_attr(p, "name"), protect=_attr(p, "protect"))
        for p in platforms_el.findall("platform")
        if _attr(p, "name") not in LEGACY_PLATFORMS
    ]


def parse_tags(tags_el: ET.Element) -> list[Tag]:
    return [
        Tag(
            name=_attr(t, "name"),
            author=_attr(t, "author"),
            contact=_attr(t, "contact"),
        )
        for t in tags_el.findall("tag")
    ]


def build_registry(root: ET.Element) -> Registry:
    """Walk the <registry> children into a Registry, in document order."""
    platforms: list[Platform] = []
    tags: list[Tag] = []
    types: list[RegistryType] = []
    enum_groups: list[EnumGroup] = []
    commands: list[Command] = []
    features: list[Feature] = []
    extensions: list[Extension] = []

    for child in root:
        if child.tag == "platforms":
            platforms.extend(parse_platforms(child))
        elif child.tag == "tags":
            tags.extend(parse_tags(child))
        elif child.tag == "types":
            types.extend(parse_types(child))
        elif child.tag == "enums":
            enum_groups.extend(parse_enum_groups(child))
        elif child.tag == "commands":
            commands.extend(parse_commands(child))
        elif child.tag == "feature":
            feature = parse_feature(child)
            if feature is not None:
                features.append(feature)
        elif child.tag == "extensions":
            extensions.extend(parse_extensions(child))

    return Registry(
        platforms=platforms,
        tags=tags,
        types=types,
        enum_groups=enum_groups,
        commands=commands,
        features=features,
        extensions=extensions,
    )


# ===--- Extension reordering ---=== #


def _promotion_depth(extension: Extension, by_name: dict[str, Extension]) -> int:
    # Hops from extension to the end of its promotion chain.
    depth = 0
    seen = {extension.name}
    target = by_name.get(extension.promotedto)
    while target is not None and target.name not in seen:
        depth += 1
        seen.add(target.name)
        target = by_name.get(target.promotedto)
    return depth


def reorder_extensions(extensions: Iterable[Extension]) -> list[Extension]:
    """Move every promoted extension to just after its promotion target.

    Targets that are not extensions (core versions) leave the extension
    where it is. Chains are settled from the end: an extension moves only
    once its own target has reached its final place.

    Args:
        extensions: Extensions in parse order.

    Returns:
        A new list in emission order.
    """
    ordered = list(extensions)
    by_name = _first_wins(ordered, lambda e: e.name)
    promoted = [
        ext
        for ext in ordered
        if ext.promotedto in by_name and ext.promotedto != ext.name
    ]
    promoted.sort(key=lambda ext: _promotion_depth(ext, by_name))
    for extension in promoted:
        ordered.remove(extension)
        target = by_name[extension.promotedto]
        ordered.insert(ordered.index(target) + 1, extension)
    return ordered


def reorder_registry(registry: Registry) -> Registry:
    return registry.with_extensions(reorder_extensions(registry.extensions))


# ===--- Dependency resolution ---=== #


@dataclass(frozen=True)
class DependencySet:
    """Types and enum groups a set of require blocks needs, in emission order.

    Every type appears after the types it references.
    """

    types: tuple[RegistryType, ...]
    enum_groups: tuple[EnumGroup, ...]


def _type_edges(t: RegistryType) -> Iterator[tuple[str, str]]:
    """Yield ("type" | "enum", name) references of a type, in visit order."""
    yield "type", t.alias
    if isinstance(t, (DefineType, BaseType, BitmaskType, HandleType)):
        yield "type", t.type_name
    if isinstance(
        t, (DefineType, BaseType, BitmaskType, HandleType, EnumType, ExternalType)
    ):
        yield "type", t.requires
        yield "type", t.bitvalues
    elif isinstance(t, StructType):
        for member in t.members:
            if member.type_name == t.name:
                continue
            yield "enum", member.array_enum
            yield "type", member.type_name
    elif isinstance(t, FuncPointerType):
        yield "type", t.return_type
        for param in t.params:
            yield "enum", param.array_enum
            yield "type", param.type_name


class _DependencyCollector:
    def __init__(self, registry: Registry):
        self.registry = registry
        self.types: list[RegistryType] = []
        self.enum_groups: list[EnumGroup] = []
        self._entered: set[str] = set()
        self._group_names: set[str] = set()

    def resolve_enum(self, name: str) -> None:
        group = self.registry.find_enum_group(name)
        if group is None or group.name in self._group_names:
            return
        self._group_names.add(group.name)
        self.enum_groups.append(group)

    def resolve_type(self, name: str) -> None:
        # Depth-first with an explicit stack. A type is appended when all of
        # its references have been appended.
        root = self.registry.find_type(name)
        if root is None or root.name in self._entered:
            return
        self._entered.add(root.name)
        stack = [(root, _type_edges(root))]
        while stack:
            current, edges = stack[-1]
            for kind, ref in edges:
                if not ref:
                    continue
                if kind == "enum":
                    self.resolve_enum(ref)
                    continue
                dep = self.registry.find_type(ref)
                if dep is None or dep.name in self._entered:
                    continue
                self._entered.add(dep.name)
                stack.append((dep, _type_edges(dep)))
                break
            else:
                stack.pop()
                self.types.append(current)

    def resolve_command(self, name: str) -> None:
        command = self.registry.canonical_command(name)
        if command is None:
            return
        self.resolve_type(command.return_type)
        for param in command.params:
            self.resolve_type(param.type_name)

    def resolve_require(self, require: Require) -> None:
        for type_name in require.types:
            self.resolve_type(type_name)
        for req_enum in require.enums:
            self.resolve_enum(req_enum.name)
        for command_name in require.commands:
            self.resolve_command(command_name)


def resolve_dependencies(
    registry: Registry, requires: Iterable[Require]
) -> DependencySet:
    """Compute the ordered, deduplicated closure of types and enum groups.

    Names the registry does not know are skipped: vk.xml references platform
    types that a given build may not declare.

    Args:
        registry: Registry to look names up in.
        requires: Require blocks of one feature or extension.

    Returns:
        DependencySet with dependencies before dependents.
    """
    collector = _DependencyCollector(registry)
    for require in requires:
        collector.resolve_require(require)
    return DependencySet(
        types=tuple(collector.types), enum_groups=tuple(collector.enum_groups)
    )


# ===--- Enum and bitmask values ---=== #


ENUM_BASE_VALUE = 1000000000
ENUM_RANGE_SIZE = 1000
ENUM_MAX_VALUE = "0x7FFFFFFF"

_LEADING_INT_RE = re.compile(r"^\s*([+-]?\d+)")


def _atoi(text: str) -> int:
    match = _LEADING_INT_RE.match(text)
    return int(match.group(1)) if match else 0


def extension_enum_value(ext_number: int, offset: int, direction: str = "") -> int:
    """Value of an extension enum per the registry's numbering scheme.

    Args:
        ext_number: Number of the extension that owns the value.
        offset: Offset within the extension's block of 1000 values.
        direction: "-" for negative (error code) values.

    Returns:
        sign * (1000000000 + (ext_number - 1) * 1000 + offset).
    """
    sign = -1 if direction == "-" else 1
    return sign * (ENUM_BASE_VALUE + (ext_number - 1) * ENUM_RANGE_SIZE + offset)


def calculate_extension_enum_value(req_enum: RequireEnum, ext_number: str = "") -> str:
    number = req_enum.extnumber or ext_number
    value = extension_enum_value(_atoi(number), _atoi(req_enum.offset), req_enum.direction)
    return str(value)


def bitpos_literal(bitpos: int, type_name: str) -> str:
    """C literal for a single flag bit.

    Bits 0-31 are a plain 32-bit hex literal. Bits 32-63 are built from two
    32-bit halves so no 64-bit literal suffix is needed.

    Raises:
        ValueError: If bitpos is outside 0..63.
    """
    if not 0 <= bitpos <= 63:
        raise ValueError(f"Bit position out of range: {bitpos}")
    if bitpos < 32:
        return f"0x{1 << bitpos:08x}"
    value = 1 << bitpos
    high = value >> 32
    low = value & 0xFFFFFFFF
    return f"({type_name})((({type_name})0x{high:08x} << 32) | (0x{low:08x}))"


def _require_enum_as_value(req_enum: RequireEnum, owner_number: str) -> EnumValue:
    value = req_enum.value
    if not (value or req_enum.bitpos or req_enum.alias) and req_enum.offset:
        value = calculate_extension_enum_value(req_enum, owner_number)
    return EnumValue(
        name=req_enum.name,
        alias=req_enum.alias,
        value=value,
        bitpos=req_enum.bitpos,
        comment=req_enum.comment,
    )


def find_enum_value(registry: Registry, name: str) -> EnumValue | None:
    """Resolve an enum value name to its non-aliased definition.

    Enum groups are searched first, then feature and extension require
    blocks. Alias cycles end the search with None.
    """
    seen: set[str] = set()
    while name and name not in seen:
        seen.add(name)
        value = registry.find_group_value(name)
        if value is None:
            found = registry.find_require_value(name)
            if found is None:
                return None
            value = _require_enum_as_value(*found)
        if not value.alias:
            return value
        name = value.alias
    return None


def extract_tag(registry: Registry, name: str) -> str:
    for tag in registry.tags:
        if len(name) > len(tag.name) and name.endswith(tag.name):
            return tag.name
    return ""


def name_to_upper_case_style(name: str) -> str:
    # VkColorSpace -> VK_COLOR_SPACE
    result = ["VK"]
    for ch in name[2:]:
        if ch.isupper():
            result.append("_" + ch)
        else:
            result.append(ch.upper())
    return "".join(result)


def max_enum_token(registry: Registry, group_name: str) -> str:
    tag = extract_tag(registry, group_name)
    base = group_name[: len(group_name) - len(tag)] if tag else group_name
    token = name_to_upper_case_style(base) + "_MAX_ENUM"
    if tag:
        token += "_" + tag
    return token


def clean_define_value(value: str) -> str:
    """Strip line continuations and // comments from a define body.

    A comment on a line of its own is removed with its newline. A trailing
    comment is removed up to, but not including, the line ending.
    """
    result = value.strip().replace("\\\n", "")
    while True:
        start = result.find("//")
        if start < 0:
            break
        whole_line = start == 0 or result[start - 1] == "\n"
        end = result.find("\n", start + 2)
        if end < 0:
            end = len(result)
        elif whole_line:
            end += 1
        elif result[end - 1] == "\r":
            end -= 1
        result = result[:start] + result[end:]
    return result


# ===--- Code emission ---=== #


@dataclass
class CodeGenState:
    """Names already written to the header during one run."""

    defines: set[str] = field(default_factory=set)
    types: set[str] = field(default_factory=set)
    commands: set[str] = field(default_factory=set)


def emit_function_typedef(
    return_type_c: str, name: str, params: Iterable[FunctionParameter]
) -> str:
    prefix = "" if "PFN_" in name else "PFN_"
    args = ", ".join(f"{p.type_c} {p.name_c}" for p in params) or "void"
    return f"typedef {return_type_c} (VKAPI_PTR *{prefix}{name})({args});\n"


def emit_includes(deps: DependencySet, state: CodeGenState) -> str:
    out = []
    for t in deps.types:
        # vk_platform.h is replaced by the template's own definitions.
        if not isinstance(t, IncludeType) or t.name == "vk_platform":
            continue
        if t.name in state.types:
            continue
        out.append(f"#include <{t.name}>\n")
        state.types.add(t.name)
    return "".join(out)


def emit_require_defines(requires: Iterable[Require], state: CodeGenState) -> str:
    out = []
    for require in requires:
        for req_enum in require.enums:
            if not req_enum.value or req_enum.extends:
                continue
            if req_enum.name in state.defines:
                continue
            out.append(f"#define {req_enum.name} {req_enum.alias or req_enum.value}\n")
            state.defines.add(req_enum.name)
    return "".join(out)


def emit_commands(
    registry: Registry, requires: Iterable[Require], state: CodeGenState
) -> str:
    out = []
    for require in requires:
        for name in require.commands:
            command = registry.find_command(name)
            if command is None or command.name in state.commands:
                continue
            if command.alias:
                # Aliases get a full signature, the target may sit behind a
                # guard this block does not share.
                base = registry.canonical_command(command.name)
                if base is not None and not base.alias:
                    out.append(
                        emit_function_typedef(base.return_type_c, command.name, base.params)
                    )
            else:
                out.append(
                    emit_function_typedef(command.return_type_c, command.name, command.params)
                )
            state.commands.add(command.name)
    return "".join(out)


def _bitmask_value_text(value: EnumValue, type_name: str) -> str:
    if value.bitpos:
        return bitpos_literal(_atoi(value.bitpos), type_name)
    return value.alias or value.value


def emit_bitmask_group(
    registry: Registry, group: EnumGroup, wide: bool, flags_type: str = "VkFlags64"
) -> str:
    """Emit a FlagBits group.

    32-bit groups become a C enum ending in a _MAX_ENUM sentinel. 64-bit
    groups cannot be a C enum, so they become a typedef of flags_type plus
    one `static const` per value, with aliases evaluated to their values.
    """
    entries: list[tuple[str, str]] = []
    emitted: set[str] = set()

    for value in group.values:
        source = value
        if wide and value.alias:
            source = find_enum_value(registry, value.alias) or value
        entries.append((value.name, _bitmask_value_text(source, group.name)))
        emitted.add(value.name)

    extenders = registry.extenders(group.name)
    for req_enum, _owner in extenders:
        if req_enum.alias or req_enum.name in emitted:
            continue
        if req_enum.bitpos:
            text = bitpos_literal(_atoi(req_enum.bitpos), group.name)
        else:
            text = req_enum.value
        entries.append((req_enum.name, text))
        emitted.add(req_enum.name)

    for req_enum, _owner in extenders:
        if not req_enum.alias or req_enum.name in emitted:
            continue
        text = req_enum.alias
        if wide:
            target = find_enum_value(registry, req_enum.alias)
            if target is not None:
                text = _bitmask_value_text(target, group.name)
        entries.append((req_enum.name, text))
        emitted.add(req_enum.name)

    if wide:
        lines = [f"typedef {flags_type} {group.name};\n"]
        lines.extend(
            f"static const {group.name} {name} = {text};\n" for name, text in entries
        )
        return "".join(lines)

    body = [f"    {name} = {text}" for name, text in entries]
    body.append(f"    {max_enum_token(registry, group.name)} = {ENUM_MAX_VALUE}")
    return "typedef enum\n{\n" + ",\n".join(body) + f"\n}} {group.name};\n"


def emit_enum_group(registry: Registry, group: EnumGroup) -> str:
    """Emit a C enum with its values and every value added by extenders.

    Extenders are written in two passes, direct values then aliases, so an
    alias never precedes its target.
    """
    body: list[str] = []
    emitted: set[str] = set()

    for value in group.values:
        body.append(f"    {value.name} = {value.alias or value.value}")
        emitted.add(value.name)

    extenders = registry.extenders(group.name)
    for req_enum, owner_number in extenders:
        if req_enum.alias or req_enum.name in emitted:
            continue
        value = req_enum.value or calculate_extension_enum_value(req_enum, owner_number)
        body.append(f"    {req_enum.name} = {value}")
        emitted.add(req_enum.name)

    for req_enum, _owner in extenders:
        if not req_enum.alias or req_enum.name in emitted:
            continue
        body.append(f"    {req_enum.name} = {req_enum.alias}")
        emitted.add(req_enum.name)

    body.append(f"    {max_enum_token(registry, group.name)} = {ENUM_MAX_VALUE}")
    return "typedef enum\n{\n" + ",\n".join(body) + f"\n}} {group.name};\n\n"


def emit_struct(t: StructType) -> str:
    lines = [f"typedef {t.category} {t.name}\n{{\n"]
    lines.extend(f"    {m.type_c} {m.name_c};\n" for m in t.members)
    lines.append(f"}} {t.name};\n\n")
    return "".join(lines)


def _emit_defines(deps: DependencySet, state: CodeGenState) -> str:
    out = []
    for t in deps.types:
        if not isinstance(t, DefineType) or t.name in state.defines:
            continue
        value = clean_define_value(t.verbatim)
        if value:
            out.append(value + "\n")
            state.defines.add(t.name)
    if out:
        out.append("\n")

    constants = []
    for group in deps.enum_groups:
        if group.kind or not group.values:
            continue
        value = group.values[0]
        if value.name in state.defines:
            continue
        constants.append(f"#define {value.name} {value.alias or value.value}\n")
        state.defines.add(value.name)
    if constants:
        constants.append("\n")
    return "".join(out + constants)


def _emit_basetypes_and_handles(deps: DependencySet, state: CodeGenState) -> str:
    basetypes = []
    for t in deps.types:
        if isinstance(t, BaseType) and t.name not in state.types:
            basetypes.append(t.verbatim + "\n")
            state.types.add(t.name)
    if basetypes:
        basetypes.append("\n")

    handles = []
    count = 0
    for t in deps.types:
        if not isinstance(t, HandleType) or t.name in state.types:
            continue
        if t.alias:
            handles.append(f"typedef {t.alias} {t.name};\n")
        else:
            handles.append(f"{t.type_name}({t.name})\n")
            count += 1
        state.types.add(t.name)
    if count:
        handles.append("\n")
    return "".join(basetypes + handles)


def _is_wide_bitmask(group: EnumGroup, flags_type: str) -> bool:
    return flags_type == "VkFlags64" or group.bitwidth == 64


def _emit_bitmasks_and_enums(
    registry: Registry, deps: DependencySet, state: CodeGenState
) -> str:
    # One pass for both: aliased bitmasks and enums can cross categories.
    out = []
    count = 0
    for t in deps.types:
        if not isinstance(t, (BitmaskType, EnumType)) or t.name in state.types:
            continue
        if t.alias:
            out.append(f"typedef {t.alias} {t.name};\n")
        elif isinstance(t, BitmaskType):
            group_name = t.requires or t.bitvalues
            group = registry.find_enum_group(group_name) if group_name else None
            if group is not None and group.name not in state.types:
                wide = _is_wide_bitmask(group, t.type_name)
                out.append("\n")
                out.append(emit_bitmask_group(registry, group, wide, t.type_name))
                state.types.add(group.name)
                count += 1
            out.append(f"typedef {t.type_name} {t.name};\n")
        else:
            group = registry.find_enum_group(t.name)
            if group is not None and group.kind == "enum":
                out.append(emit_enum_group(registry, group))
                count += 1
            elif group is not None and group.kind == "bitmask":
                # Width follows the bitmask type that names this group.
                flags = registry.find_flags_type(group.name)
                flags_type = flags.type_name if flags is not None else "VkFlags"
                wide = _is_wide_bitmask(group, flags_type)
                out.append("\n")
                out.append(emit_bitmask_group(registry, group, wide))
                count += 1
        state.types.add(t.name)
    if count:
        out.append("\n")
    return "".join(out)


def _emit_structs_and_funcpointers(
    registry: Registry, deps: DependencySet, state: CodeGenState
) -> str:
    # One pass for both: structs hold funcpointers and funcpointers take
    # struct pointers.
    out = []
    count = 0
    funcpointer_last = False
    for t in deps.types:
        if t.name in state.types:
            continue
        if isinstance(t, StructType):
            if t.alias:
                out.append(f"typedef {t.alias} {t.name};\n\n")
            else:
                if funcpointer_last:
                    out.append("\n")
                out.append(emit_struct(t))
                count += 1
            state.types.add(t.name)
            funcpointer_last = False
        elif isinstance(t, FuncPointerType):
            source: RegistryType | None = t
            if t.alias:
                source = registry.find_type(t.alias)
            if isinstance(source, FuncPointerType):
                out.append(emit_function_typedef(source.return_type_c, t.name, source.params))
                count += 1
            state.types.add(t.name)
            funcpointer_last = True
    if count:
        out.append("\n")
    return "".join(out)


def emit_dependencies(
    registry: Registry, deps: DependencySet, state: CodeGenState
) -> str:
    """Emit a dependency set in category order.

    defines, basetypes, handles, bitmasks with enums, then structs/unions
    with funcpointers. Anything already in `state` is skipped.
    """
    return (
        _emit_defines(deps, state)
        + _emit_basetypes_and_handles(deps, state)
        + _emit_bitmasks_and_enums(registry, deps, state)
        + _emit_structs_and_funcpointers(registry, deps, state)
    )


def emit_block(
    registry: Registry,
    name: str,
    requires: tuple[Require, ...],
    deps: DependencySet,
    state: CodeGenState,
) -> str:
    """Emit one feature or extension: its macro, includes, defines, types and commands."""
    return (
        f"\n#define {name} 1\n"
        + emit_includes(deps, state)
        + emit_require_defines(requires, state)
        + "\n"
        + emit_dependencies(registry, deps, state)
        + emit_commands(registry, requires, state)
    )


def emit_vulkan_main(registry: Registry) -> str:
    """Emit every feature, then cross-platform extensions, then one guarded
    section per platform with its includes first."""
    state = CodeGenState()
    out = []

    for feature in registry.features:
        deps = resolve_dependencies(registry, feature.requires)
        out.append(emit_block(registry, feature.name, feature.requires, deps, state))

    for extension in registry.extensions:
        if extension.platform:
            continue
        deps = resolve_dependencies(registry, extension.requires)
        out.append(emit_block(registry, extension.name, extension.requires, deps, state))

    for platform in registry.platforms:
        members = [
            (ext, resolve_dependencies(registry, ext.requires))
            for ext in registry.extensions
            if ext.platform == platform.name
        ]
        out.append(f"#ifdef {platform.protect}\n")
        for _ext, deps in members:
            out.append(emit_includes(deps, state))
        for ext, deps in members:
            out.append(emit_block(registry, ext.name, ext.requires, deps, state))
        out.append(f"#endif /*{platform.protect}*/\n\n")

    return "".join(out)


# ===--- Command scopes ---=== #


COMMAND_SCOPES = ("global", "instance", "device")


def is_type_child_of(registry: Registry, parent: str, child: str) -> bool:
    """Return True when handle `child` descends from handle `parent`.

    A type is not its own child. Handle aliases are followed, and a parent
    attribute may list several comma-separated parents.
    """
    if parent == child:
        return False
    seen: set[str] = set()
    pending = [child]
    while pending:
        name = pending.pop()
        if name in seen:
            continue
        seen.add(name)
        handle = registry.find_type(name)
        if not isinstance(handle, HandleType):
            continue
        if handle.alias:
            pending.append(handle.alias)
            continue
        for parent_name in handle.parent.split(","):
            parent_name = parent_name.strip()
            if parent_name == parent:
                return True
            if parent_name:
                pending.append(parent_name)
    return False


def classify_command(registry: Registry, command: Command) -> str:
    """Scope of a command from the handle type of its first parameter."""
    canonical = registry.canonical_command(command.name) or command
    if not canonical.params:
        return "global"
    first = canonical.params[0].type_name
    if first == "VkDevice" or is_type_child_of(registry, "VkDevice", first):
        return "device"
    if first == "VkInstance" or is_type_child_of(registry, "VkInstance", first):
        return "instance"
    return "global"


# ===--- Loader tables ---=== #


class CommandEntry(NamedTuple):
    name: str
    scope: str
    protect: str


def _command_sources(registry: Registry) -> Iterator[tuple[tuple[Require, ...], str]]:
    for feature in registry.features:
        yield feature.requires, ""
    for extension in registry.extensions:
        if not extension.platform:
            yield extension.requires, ""
    for platform in registry.platforms:
        for extension in registry.extensions:
            if extension.platform == platform.name:
                yield extension.requires, platform.protect


def collect_loader_commands(registry: Registry) -> list[CommandEntry]:
    """Every required command once, in header order, with scope and guard."""
    entries: list[CommandEntry] = []
    seen: set[str] = set()
    for requires, protect in _command_sources(registry):
        for require in requires:
            for name in require.commands:
                if name in seen:
                    continue
                command = registry.find_command(name)
                if command is None:
                    continue
                seen.add(name)
                entries.append(
                    CommandEntry(command.name, classify_command(registry, command), protect)
                )
    return entries


def count_command_scopes(entries: Iterable[CommandEntry]) -> dict[str, int]:
    counts = {scope: 0 for scope in COMMAND_SCOPES}
    for entry in entries:
        counts[entry.scope] += 1
    return counts


def render_command_rows(
    entries: Iterable[CommandEntry],
    render: Callable[[CommandEntry], str],
    indent: int = 4,
    heading: str = "",
) -> str:
    """Join one rendered row per command, wrapping guarded rows in #ifdef.

    The first row carries no leading newline or indent: the placeholder it
    replaces already sits at the right column.
    """
    parts = [heading] if heading else []
    newline = "\n" + " " * indent
    guard = ""
    for entry in entries:
        if entry.protect != guard:
            if guard:
                parts.append(f"\n#endif /*{guard}*/")
            if entry.protect:
                parts.append(f"\n#ifdef {entry.protect}")
            guard = entry.protect
        if parts:
            parts.append(newline)
        parts.append(render(entry))
    if guard:
        parts.append(f"\n#endif /*{guard}*/")
    return "".join(parts)


def render_funcpointer_decls(
    entries: list[CommandEntry], indent: int = 0, prefix: str = ""
) -> str:
    sections = []
    for scope in COMMAND_SCOPES:
        scoped = [entry for entry in entries if entry.scope == scope]
        if not scoped:
            continue
        sections.append(
            render_command_rows(
                scoped,
                lambda e: f"{prefix}PFN_{e.name} {e.name};",
                indent,
                heading=f"/* {scope.capitalize()} commands */",
            )
        )
    return ("\n\n" + " " * indent).join(sections)


def render_load_global(entries: list[CommandEntry]) -> str:
    return render_command_rows(
        entries,
        lambda e: f'pAPI->{e.name} = (PFN_{e.name})vkb_dlsym(g_vkbVulkanSO, "{e.name}");',
    )


def render_set_struct_from_global(entries: list[CommandEntry]) -> str:
    return render_command_rows(entries, lambda e: f"pAPI->{e.name} = {e.name};")


def render_set_global_from_struct(entries: list[CommandEntry]) -> str:
    return render_command_rows(entries, lambda e: f"{e.name} = pAPI->{e.name};")


def render_load_instance(entries: list[CommandEntry]) -> str:
    # vkGetInstanceProcAddr is set up by the template before this table runs.
    rows = [
        e
        for e in entries
        if e.scope in ("instance", "device") and e.name != "vkGetInstanceProcAddr"
    ]
    return render_command_rows(
        rows,
        lambda e: f'pAPI->{e.name} = (PFN_{e.name})pAPI->vkGetInstanceProcAddr(instance, "{e.name}");',
    )


def render_load_device(entries: list[CommandEntry]) -> str:
    rows = [e for e in entries if e.scope == "device" and e.name != "vkGetDeviceProcAddr"]
    return render_command_rows(
        rows,
        lambda e: f'pAPI->{e.name} = (PFN_{e.name})pAPI->vkGetDeviceProcAddr(device, "{e.name}");',
    )


def render_load_safe_global(entries: list[CommandEntry]) -> str:
    rows = [e for e in entries if e.scope == "global"]
    return render_command_rows(
        rows,
        lambda e: f'pAPI->{e.name} = (PFN_{e.name})pAPI->vkGetInstanceProcAddr(NULL, "{e.name}");',
    )


def render_safe_global_docs(registry: Registry) -> str:
    """Per-version list of commands vkbInit() can always load."""
    parts = []
    for feature in registry.features:
        names = ["vkGetInstanceProcAddr"] if feature.number == "1.0" else []
        for require in feature.requires:
            for name in require.commands:
                command = registry.find_command(name)
                if command is None or name in names:
                    continue
                if classify_command(registry, command) == "global":
                    names.append(name)
        parts.append(f"\nVulkan {feature.number}\n" + "\n".join(f"    {n}" for n in names))
    return "".join(parts)


# ===--- Header stamp ---=== #


class BuildStamp(NamedTuple):
    revision: int
    date: str


class PreviousStamp(NamedTuple):
    version: str
    revision: int
    date: str


_STAMP_RE = re.compile(r"vkbind - v([\d.]+)\.(\d+) - (\S+)")


def vulkan_version(registry: Registry) -> str:
    """Last feature number plus VK_HEADER_VERSION, e.g. "1.3.42"."""
    if not registry.features:
        raise GeneratorError(
            "INVALID_REGISTRY",
            "vk.xml declares no Vulkan features.",
            "Check that --vk-xml points at the Vulkan registry.",
        )
    version = registry.features[-1].number
    header = registry.find_type("VK_HEADER_VERSION")
    if isinstance(header, DefineType):
        cleaned = clean_define_value(header.verbatim)
        index = cleaned.find(header.name)
        if index >= 0:
            version += "." + cleaned[index + len(header.name) :].strip()
    return version


def parse_previous_stamp(text: str) -> PreviousStamp | None:
    match = _STAMP_RE.search(text)
    if match is None:
        return None
    return PreviousStamp(match.group(1), int(match.group(2)), match.group(3))


def resolve_build_stamp(
    previous_text: str | None,
    version: str,
    render: Callable[[BuildStamp], str],
    today: str,
) -> BuildStamp:
    """Pick the revision and date written into the header banner.

    A new Vulkan version, or no previous output, starts at revision 0. If
    the previous output is byte-identical to what would be generated under
    its own stamp, that stamp is kept so re-runs change nothing. Otherwise
    the revision goes up by one.

    Args:
        previous_text: Content of the existing output, or None.
        version: Vulkan version of the registry being generated.
        render: Renders the full header for a candidate stamp.
        today: Date string for a new stamp.

    Returns:
        The BuildStamp to render with.
    """
    previous = parse_previous_stamp(previous_text) if previous_text is not None else None
    if previous is None or previous.version != version:
        return BuildStamp(0, today)
    candidate = BuildStamp(previous.revision, previous.date)
    if render(candidate) == previous_text:
        return candidate
    return BuildStamp(previous.revision + 1, today)


# ===--- Template stitching ---=== #


TEMPLATE_TOKENS = (
    "/*<<vulkan_main>>*/",
    "/*<<vulkan_funcpointers_decl_global>>*/",
    "/*<<vulkan_funcpointers_decl_global:4>>*/",
    "/*<<vulkan_funcpointers_decl_global:extern>>*/",
    "/*<<load_global_api_funcpointers>>*/",
    "/*<<set_struct_api_from_global>>*/",
    "/*<<set_global_api_from_struct>>*/",
    "/*<<load_instance_api>>*/",
    "/*<<load_device_api>>*/",
    "/*<<load_safe_global_api>>*/",
    "<<safe_global_api_docs>>",
    "<<vulkan_version>>",
    "<<revision>>",
    "<<date>>",
)

_PLACEHOLDER_RE = re.compile(r"(?:/\*)?<<[A-Za-z0-9_:]+>>(?:\*/)?")


def stitch_template(template_text: str, blocks: dict[str, str]) -> str:
    """Replace every placeholder token in the template with its block.

    Raises:
        GeneratorError: UNRESOLVED_PLACEHOLDER when the template holds a
            token with no block.
    """
    for match in _PLACEHOLDER_RE.finditer(template_text):
        token = match.group(0)
        if token not in blocks:
            raise GeneratorError(
                "UNRESOLVED_PLACEHOLDER",
                f"Template placeholder {token} has no generated content.",
                "Supported placeholders: " + ", ".join(TEMPLATE_TOKENS),
            )
    result = template_text
    for token, content in blocks.items():
        result = result.replace(token, content)
    return result


def build_template_blocks(
    registry: Registry, entries: list[CommandEntry] | None = None
) -> dict[str, str]:
    """Generate every template block except the revision and date."""
    if entries is None:
        entries = collect_loader_commands(registry)
    return {
        "/*<<vulkan_main>>*/": emit_vulkan_main(registry),
        "/*<<vulkan_funcpointers_decl_global>>*/": render_funcpointer_decls(entries),
        "/*<<vulkan_funcpointers_decl_global:4>>*/": render_funcpointer_decls(
            entries, indent=4
        ),
        "/*<<vulkan_funcpointers_decl_global:extern>>*/": render_funcpointer_decls(
            entries, prefix="extern "
        ),
        "/*<<load_global_api_funcpointers>>*/": render_load_global(entries),
        "/*<<set_struct_api_from_global>>*/": render_set_struct_from_global(entries),
        "/*<<set_global_api_from_struct>>*/": render_set_global_from_struct(entries),
        "/*<<load_instance_api>>*/": render_load_instance(entries),
        "/*<<load_device_api>>*/": render_load_device(entries),
        "/*<<load_safe_global_api>>*/": render_load_safe_global(entries),
        "<<safe_global_api_docs>>": render_safe_global_docs(registry),
        "<<vulkan_version>>": vulkan_version(registry),
    }


def render_header(template_text: str, blocks: dict[str, str], stamp: BuildStamp) -> str:
    stamped = dict(blocks)
    stamped["<<revision>>"] = str(stamp.revision)
    stamped["<<date>>"] = stamp.date
    return stitch_template(template_text, stamped)


# ===--- Model dump ---=== #


def format_model_dump(registry: Registry) -> str:
    lines = ["=== PLATFORMS ==="]
    lines.extend(f"{p.name}: {p.protect}" for p in registry.platforms)
    lines.append("=== TYPES ===")
    lines.extend(f"{t.category} {t.name}" for t in registry.types)
    lines.append("=== COMMANDS ===")
    lines.extend(c.name for c in registry.commands)
    lines.append("=== FEATURES ===")
    lines.extend(f.name for f in registry.features)
    lines.append("=== EXTENSION ===")
    lines.extend(e.name for e in registry.extensions)
    return "\n".join(lines)


# ===--- Main generation ---=== #


def run_generate(config: GenerateConfig) -> FileWriteResult:
    """Execute the complete generation pipeline for a GenerateConfig.

    Fetches vk.xml if missing, parses and reorders the registry, renders
    every template block, stamps the header and writes it.

    Args:
        config: Validated GenerateConfig from build_config.

    Returns:
        FileWriteResult for the written header.

    Raises:
        GeneratorError: Any I/O, download, registry or template failure.
    """
    if not config.vk_xml.is_file():
        if not config.download:
            raise GeneratorError(
                "FAILED_TO_OPEN_FILE",
                f"vk.xml not found: {config.vk_xml}",
                "Drop --no-download to fetch it, or pass --vk-xml /path/to/vk.xml.",
            )
        download_registry(config.vk_xml)

    print(f"Parsing: {config.vk_xml}")
    root = parse_registry_document(read_text_file(config.vk_xml))
    registry = reorder_registry(build_registry(root))
    print(
        f"  Registry: {len(registry.platforms)} platforms, {len(registry.tags)} tags, "
        f"{len(registry.types)} types, {len(registry.enum_groups)} enum groups, "
        f"{len(registry.commands)} commands"
    )
    platform_specific = sum(1 for ext in registry.extensions if ext.platform)
    print(
        f"  Features: {len(registry.features)}, "
        f"Extensions: {len(registry.extensions)} ({platform_specific} platform-specific)"
    )
    if config.dump:
        print(format_model_dump(registry))

    template_text = read_text_file(config.template)
    entries = collect_loader_commands(registry)
    blocks = build_template_blocks(registry, entries)
    counts = count_command_scopes(entries)
    print(
        f"  Commands: {counts['global']} global, {counts['instance']} instance, "
        f"{counts['device']} device"
    )

    previous_text = read_text_file(config.output) if config.output.is_file() else None
    stamp = resolve_build_stamp(
        previous_text,
        blocks["<<vulkan_version>>"],
        lambda candidate: render_header(template_text, blocks, candidate),
        date.today().strftime("%Y-%m-%d"),
    )
    result = write_output(config.output, render_header(template_text, blocks, stamp))
    print(
        f"  Written: {result.path} ({result.line_count} lines, {result.byte_count} bytes)"
    )
    return result


def _report(err: GeneratorError) -> None:
    print(f"Error [{err.code}]: {err.message}")
    if err.suggestion:
        print(f"Hint: {err.suggestion}")


def main(argv: list[str] | None = None) -> None:
    try:
        config = build_config(argv)
    except GeneratorError as err:
        _report(err)
        raise SystemExit(err.exit_code) from err

    try:
        run_generate(config)
    except GeneratorError as err:
        _report(err)
        raise SystemExit(err.exit_code) from err
    except (RuntimeError, ValueError) as err:
        print(f"Internal error: {err}")
        raise SystemExit(1) from err


if __name__ == "__main__":
    main()
