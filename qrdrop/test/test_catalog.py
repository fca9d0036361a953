import os

import pytest

from qrdrop.catalog import FileCatalog, get_mime_type
from qrdrop.errors import FatalConfigError


@pytest.fixture
def roots(tmp_path):
    first = tmp_path / 'first'
    second = tmp_path / 'second'
    first.mkdir()
    second.mkdir()
    (first / 'report.pdf').write_bytes(b'first')
    (first / 'Photo.JPG').write_bytes(b'jpeg')
    (first / 'nested').mkdir()
    (first / 'nested' / 'deep.txt').write_bytes(b'deep')
    (second / 'report.pdf').write_bytes(b'second')
    (second / 'notes.txt').write_bytes(b'notes')
    return first, second


def test_directories_contribute_top_level_files(roots):
    first, second = roots
    catalog = FileCatalog([str(first), str(second)])
    assert sorted(catalog.names()) == ['Photo.JPG', 'notes.txt', 'report.pdf']
    assert 'deep.txt' not in catalog
    assert 'nested' not in catalog


def test_first_root_wins_on_collision(roots):
    first, second = roots
    catalog = FileCatalog([str(first), str(second)])
    assert catalog.lookup('report.pdf') == str(first / 'report.pdf')

    catalog = FileCatalog([str(second), str(first)])
    assert catalog.lookup('report.pdf') == str(second / 'report.pdf')


def test_single_file_root(roots):
    first, _ = roots
    catalog = FileCatalog([str(first / 'report.pdf')])
    assert catalog.names() == ['report.pdf']


def test_lookup_falls_back_to_case_insensitive(roots):
    first, second = roots
    catalog = FileCatalog([str(first), str(second)])
    assert catalog.lookup('photo.jpg') == str(first / 'Photo.JPG')
    assert catalog.lookup('missing.txt') is None


def test_symlinks_are_not_listed(roots, tmp_path):
    first, _ = roots
    (tmp_path / 'outside.txt').write_bytes(b'x')
    os.symlink(tmp_path / 'outside.txt', first / 'link.txt')
    catalog = FileCatalog([str(first)])
    assert 'link.txt' not in catalog
    # handed back unresolved so the download handler can refuse it
    assert catalog.resolve('link.txt') == os.path.join(str(first), 'link.txt')


def test_find_on_disk_sees_new_files(roots):
    first, _ = roots
    catalog = FileCatalog([str(first)])
    (first / 'late.txt').write_bytes(b'late')
    assert catalog.lookup('late.txt') is None
    assert catalog.resolve('late.txt') == os.path.realpath(first / 'late.txt')


def test_find_on_disk_refuses_traversal(roots):
    first, second = roots
    catalog = FileCatalog([str(first)])
    assert catalog.find_on_disk('../second/notes.txt') is None
    assert catalog.find_on_disk('%2e%2e%2fsecond%2fnotes.txt') is None


def test_find_on_disk_ignores_subdirectories(roots):
    first, _ = roots
    catalog = FileCatalog([str(first)])
    assert catalog.find_on_disk('nested/deep.txt') is None
    assert catalog.find_on_disk('nested%2Fdeep.txt') is None
    assert catalog.find_on_disk('nested%5Cdeep.txt') is None
    assert catalog.find_on_disk('nested') is None
    assert catalog.find_on_disk('..') is None


def test_list_files_metadata_and_filter(roots):
    first, second = roots
    catalog = FileCatalog([str(first), str(second)])
    listing = [m.to_dict() for m in catalog.list_files()]
    assert [m['name'] for m in listing] == ['Photo.JPG', 'notes.txt', 'report.pdf']
    report = listing[2]
    assert report['size'] == 5
    assert report['type'] == 'application/pdf'
    assert report['modified'].endswith('Z')

    filtered = catalog.list_files(['txt'])
    assert [m.name for m in filtered] == ['notes.txt']


def test_validate_share_paths(tmp_path, roots):
    first, _ = roots
    FileCatalog.validate_share_paths([str(first)])
    with pytest.raises(FatalConfigError):
        FileCatalog.validate_share_paths([str(tmp_path / 'missing')])
    os.symlink(first, tmp_path / 'linked')
    with pytest.raises(FatalConfigError):
        FileCatalog.validate_share_paths([str(tmp_path / 'linked')])


def test_mime_types():
    assert get_mime_type('a.PDF') == 'application/pdf'
    assert get_mime_type('a.unknownext') == 'application/octet-stream'
