"""Shared fixtures: an in-memory npm registry and tarball builders."""

import asyncio
import base64
import hashlib
import io
import json
import tarfile
from collections import Counter

import pytest

from common.errors import NetworkError, ResolutionError
from registry.npm.models import Packument
from versioning.models import parse_version

REGISTRY = "https://registry.test"


def make_tarball(files, executable=()):
    """Build a gzip tarball; every path is placed under ``package/``."""
    buf = io.BytesIO()
    with tarfile.open(fileobj=buf, mode="w:gz") as archive:
        for path, content in sorted(files.items()):
            data = content.encode("utf-8") if isinstance(content, str) else content
            info = tarfile.TarInfo(f"package/{path}")
            info.size = len(data)
            info.mode = 0o755 if path in executable else 0o644
            archive.addfile(info, io.BytesIO(data))
    return buf.getvalue()


def sri_sha512(data):
    return "sha512-" + base64.b64encode(hashlib.sha512(data).digest()).decode("ascii")


class FakeRegistry:
    """Serves packuments and tarballs from memory and counts every request."""

    def __init__(self):
        self.docs = {}
        self.tarballs = {}
        self.fetches = Counter()
        self.tarball_fetches = Counter()
        self.failing = set()

    def publish(self, name, version, dependencies=None, bins=None, files=None,
                scripts=None, integrity=None, tarball=None):
        manifest = {"name": name, "version": version}
        if dependencies:
            manifest["dependencies"] = dict(dependencies)
        if bins:
            manifest["bin"] = bins
        if scripts:
            manifest["scripts"] = dict(scripts)
        contents = {"package.json": json.dumps(manifest)}
        contents.update(files or {})
        data = tarball if tarball is not None else make_tarball(contents)

        url = f"{REGISTRY}/{name}/-/{name.rsplit('/', 1)[-1]}-{version}.tgz"
        self.tarballs[url] = data
        doc = self.docs.setdefault(name, {"name": name, "dist-tags": {}, "versions": {}})
        doc["versions"][version] = {
            **manifest,
            "dist": {"tarball": url, "integrity": integrity or sri_sha512(data)},
        }
        latest = max(doc["versions"], key=parse_version)
        doc["dist-tags"]["latest"] = latest
        return url

    def tag(self, name, tag, version):
        self.docs[name]["dist-tags"][tag] = version

    async def fetch_package(self, name):
        self.fetches[name] += 1
        await asyncio.sleep(0)
        if name not in self.docs:
            raise ResolutionError(f"Package {name} was not found in the registry", package_name=name)
        return Packument.from_json(name, json.loads(json.dumps(self.docs[name])))

    async def iter_tarball(self, url):
        self.tarball_fetches[url] += 1
        await asyncio.sleep(0)
        if url in self.failing or url not in self.tarballs:
            raise NetworkError(f"tarball download failed: {url}", url=url, status=503)
        data = self.tarballs[url]
        half = len(data) // 2
        yield data[:half]
        await asyncio.sleep(0)
        yield data[half:]


@pytest.fixture
def registry():
    return FakeRegistry()


@pytest.fixture
def project(tmp_path, monkeypatch):
    """Empty project directory used as the working directory."""
    monkeypatch.chdir(tmp_path)
    return tmp_path


@pytest.fixture(autouse=True)
def fast_retries(monkeypatch):
    from constants import Constants
    monkeypatch.setattr(Constants, "HTTP_RETRY_BASE_DELAY_SEC", 0)


def write_manifest(path, dependencies=None, dev_dependencies=None, scripts=None, **extra):
    data = dict(extra)
    if dependencies:
        data["dependencies"] = dependencies
    if dev_dependencies:
        data["devDependencies"] = dev_dependencies
    if scripts:
        data["scripts"] = scripts
    path.write_text(json.dumps(data, indent=2))
    return path
