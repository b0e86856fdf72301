"""Bundle serialization: USDA description, zip transport and import/export."""

from .archive import (
    pack_archive,
    read_archive,
    read_archive_async,
    save_archive,
    unpack_archive,
    write_archive,
    write_archive_async,
)
from .bundle import (
    ImportedScene,
    SceneBundle,
    build_bundle,
    export_bundle,
    export_bundle_async,
    import_bundle,
    import_bundle_async,
)
from .usda import parse_usda, sanitize_name, write_usda

__all__ = [
    "pack_archive",
    "read_archive",
    "read_archive_async",
    "save_archive",
    "unpack_archive",
    "write_archive",
    "write_archive_async",
    "ImportedScene",
    "SceneBundle",
    "build_bundle",
    "export_bundle",
    "export_bundle_async",
    "import_bundle",
    "import_bundle_async",
    "parse_usda",
    "sanitize_name",
    "write_usda",
]
