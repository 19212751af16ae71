#!/usr/bin/env python3
"""
Archive - ZIP packaging of a run directory
"""

import os
import zipfile

# Already compressed, stored as is
STORED_EXTENSIONS = ('.tar',)


def zip_directory(source: str, target: str):
    """
    Pack the tree below source into the ZIP file target.

    Entry names are relative to source; directory entries end with '/'.
    Tarballs are stored, everything else is deflated.
    """
    source = os.path.normpath(source)
    fd = os.open(target, os.O_RDWR | os.O_CREAT | os.O_TRUNC, 0o600)
    with os.fdopen(fd, 'wb') as f, zipfile.ZipFile(f, 'w') as archive:
        for root, dirs, files in os.walk(source):
            dirs.sort()
            if root != source:
                # ZipInfo.from_file appends the trailing '/'
                archive.write(root, os.path.relpath(root, source))

            for name in sorted(files):
                path = os.path.join(root, name)
                if os.path.splitext(name)[1] in STORED_EXTENSIONS:
                    compress_type = zipfile.ZIP_STORED
                else:
                    compress_type = zipfile.ZIP_DEFLATED
                archive.write(path, os.path.relpath(path, source), compress_type=compress_type)
