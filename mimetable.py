"""Extension -> content-type table used when serving assets.

Lookups match the longest dotted suffix of the file name, so a file called
``report.symbols.json`` picks up a ``.symbols.json`` entry before ``.json``.
"""
import mimetypes
from typing import Iterable, Mapping

DEFAULT_CONTENT_TYPE = 'application/octet-stream'


def base_types() -> dict:
    """Python's built-in table, without reading the host's mime.types files."""
    table = mimetypes.MimeTypes()
    return {ext.lower(): ctype for ext, ctype in table.types_map[True].items()}


class MimeTable:
    def __init__(self, overrides: Mapping[str, str] | None = None,
                 base: Mapping[str, str] | None = None,
                 fallback: str = DEFAULT_CONTENT_TYPE):
        self.fallback = fallback
        self._types = dict(base_types() if base is None else
                           {ext.lower(): ctype for ext, ctype in base.items()})
        for ext, ctype in (overrides or {}).items():
            self.add(ext, ctype)

    def add(self, extension: str, content_type: str):
        if not extension.startswith('.'):
            extension = '.' + extension
        self._types[extension.lower()] = content_type

    def get(self, extension: str):
        return self._types.get(extension.lower())

    def suffixes(self, filename: str) -> Iterable[str]:
        """Candidate extensions for ``filename``, longest first."""
        name = filename.rsplit('/', 1)[-1].lower()
        start = 1 if name.startswith('.') else 0  # dotfiles have no extension
        idx = name.find('.', start)
        while idx != -1:
            yield name[idx:]
            idx = name.find('.', idx + 1)

    def lookup(self, filename: str) -> str:
        for suffix in self.suffixes(filename):
            ctype = self._types.get(suffix)
            if ctype:
                return ctype
        return self.fallback

    def __contains__(self, extension):
        return extension.lower() in self._types

    def __len__(self):
        return len(self._types)

    def items(self):
        return self._types.items()
