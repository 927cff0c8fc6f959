"""test suite for domain models."""
import pytest
from packaging.version import InvalidVersion, Version
from pydantic import ValidationError
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from quarry.domain.models import (
    IndexDependency,
    IndexRecord,
    IndexRecords,
    Package,
    PackageId,
    PackageName,
    SourceId,
)


class TestPackageName:
    def test_valid_names(self):
        for name in ["foo", "foo_bar", "foo-bar", "_private", "Pkg2"]:
            assert str(PackageName(name)) == name

    def test_invalid_names(self):
        for name in ["", "1foo", "foo bar", "foo/bar", "a" * 65]:
            with pytest.raises(ValidationError):
                PackageName(name)

    def test_equality_and_hash(self):
        assert PackageName("foo") == PackageName("foo")
        assert PackageName("foo") != PackageName("Foo")
        assert len({PackageName("foo"), PackageName("foo")}) == 1

    def test_of_passes_instances_through(self):
        name = PackageName("foo")
        assert PackageName.of(name) is name
        assert PackageName.of("foo") == name

    def test_frozen(self):
        name = PackageName("foo")
        with pytest.raises(ValidationError):
            name.root = "bar"


class TestPackageId:
    @pytest.fixture
    def source(self):
        return SourceId.for_registry("https://registry.test/index/")

    def test_string_name_is_validated(self, source):
        pid = PackageId(name="foo", version="1.0.0", source=source)
        assert pid.name == PackageName("foo")
        with pytest.raises(ValidationError):
            PackageId(name="not valid", version="1.0.0", source=source)

    def test_invalid_version(self, source):
        with pytest.raises((ValidationError, InvalidVersion)):
            PackageId(name="foo", version="not-a-version", source=source)

    def test_rendering(self, source):
        pid = PackageId(name="foo", version="1.2.3", source=source)
        assert str(pid) == "foo v1.2.3 (registry+https://registry.test/index)"
        assert pid.tarball_name == "foo-1.2.3.tar.zst"
        assert pid.parsed_version == Version("1.2.3")

    def test_hashable(self, source):
        a = PackageId(name="foo", version="1.0.0", source=source)
        b = PackageId(name="foo", version="1.0.0", source=source)
        assert a == b
        assert len({a, b}) == 1


class TestIndexRecords:
    @pytest.fixture
    def records(self):
        return IndexRecords.model_validate_json(
            '[{"v": "1.10.0", "deps": [{"name": "bar", "req": ">=1"}], "cksum": "sha256:aa"},'
            ' {"v": "1.2.0", "deps": [], "cksum": "sha256:bb"}]'
        )

    def test_parse(self, records):
        assert len(records) == 2
        first = list(records)[0]
        assert first.deps[0].name == PackageName("bar")
        assert Version("1.5") in first.deps[0].specifier_set

    def test_find(self, records):
        assert records.find("1.2.0").cksum == "sha256:bb"
        assert records.find("1.2").cksum == "sha256:bb"
        assert records.find("9.9.9") is None

    def test_versions_sorted_semantically(self, records):
        assert records.versions() == ["1.2.0", "1.10.0"]

    def test_dump_uses_short_names(self, records):
        dumped = records.model_dump(mode="json")
        assert dumped[0] == {"v": "1.10.0", "deps": [{"name": "bar", "req": ">=1"}], "cksum": "sha256:aa"}


class TestPackage:
    def test_package_properties(self):
        pkg = Package(
            id=PackageId(name="foo", version="1.0.0", source=SourceId.for_local("/tmp/foo")),
            dependencies=[IndexDependency(name="bar")],
        )
        assert pkg.name == PackageName("foo")
        assert pkg.version == "1.0.0"
        assert pkg.description == ""
        assert pkg.dependencies[0].req == ""

    def test_source_rendering(self):
        assert str(SourceId.for_local("/tmp/reg")) == "local+/tmp/reg"


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
