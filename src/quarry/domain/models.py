import re
from typing import List, Optional

from packaging.specifiers import SpecifierSet
from packaging.version import Version
from pydantic import BaseModel, ConfigDict, Field, RootModel, field_validator

NAME_PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9_\-]*$")
MAX_NAME_LENGTH = 64


class PackageName(RootModel[str]):
    """human-readable package identifier, unique within a registry."""
    model_config = ConfigDict(frozen=True)

    @field_validator("root")
    @classmethod
    def _validate(cls, value: str) -> str:
        if not value:
            raise ValueError("empty string cannot be used as package name")
        if len(value) > MAX_NAME_LENGTH:
            raise ValueError(f"package name cannot be longer than {MAX_NAME_LENGTH} characters: {value}")
        if not NAME_PATTERN.match(value):
            raise ValueError(f"invalid package name: {value}")
        return value

    @classmethod
    def of(cls, value: "str | PackageName") -> "PackageName":
        return value if isinstance(value, PackageName) else cls(value)

    def __str__(self) -> str:
        return self.root

    def __hash__(self) -> int:
        return hash(self.root)


class SourceId(BaseModel):
    """where a package comes from: an http registry or a local directory."""
    model_config = ConfigDict(frozen=True)

    kind: str = "registry"
    url: str

    @classmethod
    def for_registry(cls, url: str) -> "SourceId":
        return cls(kind="registry", url=url.rstrip("/"))

    @classmethod
    def for_local(cls, path) -> "SourceId":
        return cls(kind="local", url=str(path))

    def __str__(self) -> str:
        return f"{self.kind}+{self.url}"


class PackageId(BaseModel):
    """name + version + source, identifying one fetchable archive."""
    model_config = ConfigDict(frozen=True)

    name: PackageName
    version: str
    source: SourceId

    @field_validator("version")
    @classmethod
    def _validate_version(cls, value: str) -> str:
        # raises InvalidVersion (a ValueError) for garbage
        Version(value)
        return value

    @property
    def parsed_version(self) -> Version:
        return Version(self.version)

    @property
    def tarball_name(self) -> str:
        return f"{self.name}-{self.version}.tar.zst"

    def __str__(self) -> str:
        return f"{self.name} v{self.version} ({self.source})"


class IndexDependency(BaseModel):
    name: PackageName
    req: str = ""

    @property
    def specifier_set(self) -> SpecifierSet:
        return SpecifierSet(self.req)


class IndexRecord(BaseModel):
    """one published version of a package, as stored in the registry index."""
    v: str
    deps: List[IndexDependency] = Field(default_factory=list)
    cksum: str

    @property
    def parsed_version(self) -> Version:
        return Version(self.v)


class IndexRecords(RootModel[List[IndexRecord]]):
    """all known published versions of one package name."""

    def __iter__(self):
        return iter(self.root)

    def __len__(self) -> int:
        return len(self.root)

    def find(self, version: str) -> Optional[IndexRecord]:
        wanted = Version(version)
        for record in self.root:
            if record.parsed_version == wanted:
                return record
        return None

    def versions(self) -> List[str]:
        return [r.v for r in sorted(self.root, key=lambda r: r.parsed_version)]


class Package(BaseModel):
    """a resolved package offered for publishing (identity + manifest metadata)."""
    id: PackageId
    description: str = ""
    license: Optional[str] = None
    authors: List[str] = Field(default_factory=list)
    homepage: Optional[str] = None
    dependencies: List[IndexDependency] = Field(default_factory=list)

    @property
    def name(self) -> PackageName:
        return self.id.name

    @property
    def version(self) -> str:
        return self.id.version
