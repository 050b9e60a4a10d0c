"""Config readers: one per project file kind, each tolerant of absence and bad input."""

from fleetscan.readers.envfiles import DotenvInfo, DotenvReader
from fleetscan.readers.lockfile import LockfileInfo, LockfileReader, effective_linker
from fleetscan.readers.manifest import ManifestReader, PackageJson
from fleetscan.readers.npmrc import NpmrcInfo, NpmrcReader
from fleetscan.readers.settings import SettingsReader

__all__ = [
    "DotenvInfo",
    "DotenvReader",
    "LockfileInfo",
    "LockfileReader",
    "ManifestReader",
    "NpmrcInfo",
    "NpmrcReader",
    "PackageJson",
    "SettingsReader",
    "effective_linker",
]
