"""
Tests keeping pyproject.toml, requirements.txt and requirements-dev.txt in sync.
"""

import importlib.metadata
import os
import re
import sys
import tomllib
from pathlib import Path

import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import config

ROOT = Path(__file__).parent.parent


def _normalize(requirement: str) -> str:
    return requirement.strip().lower().replace(' ', '')


def read_requirements_file(name: str) -> set[str]:
    """Requirement lines of a pip requirements file, comments and includes skipped."""
    path = ROOT / name
    if not path.exists():
        return set()
    entries = set()
    for line in path.read_text().splitlines():
        line = line.strip()
        if not line or line.startswith(('#', '-r', '-e', 'git+')):
            continue
        entries.add(_normalize(line))
    return entries


def read_pyproject() -> dict:
    with open(ROOT / 'pyproject.toml', 'rb') as f:
        return tomllib.load(f)


def declared(data: dict, group: str | None = None) -> set[str]:
    """Runtime dependencies, or those of an optional group."""
    project = data.get('project', {})
    if group is None:
        deps = project.get('dependencies', [])
    else:
        deps = project.get('optional-dependencies', {}).get(group, [])
    return {_normalize(d) for d in deps}


def distribution_name(requirement: str) -> str:
    name = re.split(r'==|>=|~=|<=|>|<', requirement)[0]
    return re.sub(r'\[.*\]', '', name).strip()


class TestDependencyFiles:
    """The three dependency declarations must agree."""

    def test_runtime_requirements_match(self):
        assert read_requirements_file('requirements.txt') == declared(read_pyproject())

    def test_dev_requirements_match(self):
        assert read_requirements_file('requirements-dev.txt') == declared(read_pyproject(), 'dev')

    def test_project_metadata(self):
        project = read_pyproject()['project']
        assert project['name'] == 'celltrace'
        assert project['version'] == config.VERSION


class TestInstalledEnvironment:
    """Declared distributions must be installed at a matching version."""

    @pytest.mark.parametrize('requirement', sorted(
        declared(read_pyproject()) | declared(read_pyproject(), 'dev')
    ))
    def test_installed(self, requirement):
        name = distribution_name(requirement)
        try:
            installed = importlib.metadata.version(name)
        except importlib.metadata.PackageNotFoundError:
            pytest.fail(f"{name} is declared but not installed")
        if '==' in requirement:
            assert installed == requirement.split('==')[1]
