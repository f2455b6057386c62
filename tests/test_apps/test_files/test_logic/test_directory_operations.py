"""Tests for directory tree business logic."""

import pytest
from django.db import DatabaseError
from django.db.models import QuerySet

from server.apps.files.exceptions import (
    ConflictError,
    InvalidOperationError,
    NotEmptyError,
    NotFoundError,
    ValidationError,
)
from server.apps.files.logic.directory_operations import (
    DirectoryDefaults,
    create_directory,
    delete_directory,
    ensure_path,
    get_directory,
    list_directories,
    rename_directory,
    update_directory,
)
from server.apps.files.models import (
    Directory,
    ExpirationPolicy,
    File,
    FileStatus,
    Permission,
)


def _make_file(directory, filename, **fields):
    """Create a file row inside a directory without touching storage."""
    return File.objects.create(
        owner_id=directory.owner_id,
        directory=directory,
        filename=filename,
        full_path=(
            f'/{filename}' if directory.is_root
            else f'{directory.full_path}/{filename}'
        ),
        **fields,
    )


@pytest.mark.django_db
def test_ensure_path_creates_every_ancestor(user):
    """Test a deep path materializes exactly one row per segment."""
    leaf = ensure_path(user.id, '/a/b/c')

    paths = list(
        Directory.objects.filter(owner=user).values_list('full_path', flat=True),
    )
    assert paths == ['/a', '/a/b', '/a/b/c']
    assert leaf.full_path == '/a/b/c'
    assert leaf.parent.full_path == '/a/b'
    assert leaf.parent.parent.full_path == '/a'
    assert leaf.parent.parent.parent is None


@pytest.mark.django_db
def test_ensure_path_is_idempotent(user):
    """Test repeated calls return the same rows and create nothing new."""
    first = ensure_path(user.id, '/a/b/c')
    count = Directory.objects.count()

    second = ensure_path(user.id, 'a//b/c/')

    assert second.id == first.id
    assert Directory.objects.count() == count == 3


@pytest.mark.django_db
def test_ensure_path_root(user):
    """Test the root row is created only when asked for directly."""
    ensure_path(user.id, '/a')
    assert not Directory.objects.filter(owner=user, full_path='/').exists()

    root = ensure_path(user.id, '/')

    assert root.is_root
    assert root.parent is None
    assert ensure_path(user.id, '').id == root.id
    assert Directory.objects.get(owner=user, full_path='/a').parent is None


@pytest.mark.django_db
def test_ensure_path_applies_defaults_to_leaf_only(user):
    """Test leaf defaults never leak to ancestors."""
    defaults = DirectoryDefaults(
        permissions=Permission.PUBLIC,
        expiration_policy=ExpirationPolicy.DAYS_7,
    )

    leaf = ensure_path(user.id, '/shared/drop', leaf_defaults=defaults)
    parent = Directory.objects.get(owner=user, full_path='/shared')

    assert leaf.default_permissions == Permission.PUBLIC
    assert leaf.default_expiration_policy == ExpirationPolicy.DAYS_7
    assert parent.default_permissions == Permission.PRIVATE
    assert parent.default_expiration_policy == ExpirationPolicy.INFINITE


@pytest.mark.django_db
def test_ensure_path_updates_existing_leaf_defaults(user):
    """Test defaults are applied to an already existing leaf."""
    ensure_path(user.id, '/shared')

    leaf = ensure_path(
        user.id,
        '/shared',
        leaf_defaults=DirectoryDefaults(permissions=Permission.PUBLIC),
    )
    leaf.refresh_from_db()

    assert leaf.default_permissions == Permission.PUBLIC


@pytest.mark.django_db
def test_ensure_path_isolates_owners(user, other_user):
    """Test two owners get separate trees for the same path."""
    mine = ensure_path(user.id, '/docs')
    theirs = ensure_path(other_user.id, '/docs')

    assert mine.id != theirs.id
    assert Directory.objects.filter(full_path='/docs').count() == 2


@pytest.mark.django_db
def test_ensure_path_unknown_owner():
    """Test paths cannot be created for a missing user."""
    with pytest.raises(NotFoundError):
        ensure_path(99999, '/docs')


@pytest.mark.django_db
def test_ensure_path_rejects_traversal(user):
    """Test malformed paths are rejected before any write."""
    with pytest.raises(ValidationError):
        ensure_path(user.id, '/docs/../etc')

    assert not Directory.objects.exists()


@pytest.mark.django_db
def test_create_directory_with_defaults(user):
    """Test explicit creation stores the given defaults."""
    directory = create_directory(
        user.id,
        '/inbox',
        default_permissions='public',
        default_expiration_policy='30d',
    )

    assert directory.full_path == '/inbox'
    assert directory.default_permissions == Permission.PUBLIC
    assert directory.default_expiration_policy == ExpirationPolicy.DAYS_30


@pytest.mark.django_db
@pytest.mark.parametrize('kwargs', [
    {'full_path': '/'},
    {'full_path': ''},
    {'full_path': '/x', 'default_permissions': 'everyone'},
    {'full_path': '/x', 'default_expiration_policy': '5d'},
])
def test_create_directory_rejects_invalid_input(user, kwargs):
    """Test root paths and unknown defaults are validation errors."""
    with pytest.raises(ValidationError):
        create_directory(user.id, **kwargs)


@pytest.mark.django_db
def test_rename_directory_moves_subtree(user):
    """Test renaming rewrites descendants and leaves siblings alone."""
    proj = ensure_path(user.id, '/proj')
    sub = ensure_path(user.id, '/proj/sub')
    moved_file = _make_file(sub, 'a.txt', object_key='development/infinite/1/key')
    projects = ensure_path(user.id, '/projects')
    sibling_file = _make_file(projects, 'b.txt')

    renamed = rename_directory(proj.id, user.id, '/archive')

    sub.refresh_from_db()
    moved_file.refresh_from_db()
    projects.refresh_from_db()
    sibling_file.refresh_from_db()
    assert renamed.full_path == '/archive'
    assert sub.full_path == '/archive/sub'
    assert sub.parent_id == proj.id
    assert moved_file.full_path == '/archive/sub/a.txt'
    assert moved_file.object_key == 'development/infinite/1/key'
    assert projects.full_path == '/projects'
    assert sibling_file.full_path == '/projects/b.txt'


@pytest.mark.django_db
def test_rename_directory_prefix_is_exact(user):
    """Test '/doc' never drags '/documents' along."""
    doc = ensure_path(user.id, '/doc')
    documents = ensure_path(user.id, '/documents')
    nested = ensure_path(user.id, '/documents/doc')

    rename_directory(doc.id, user.id, '/papers')

    documents.refresh_from_db()
    nested.refresh_from_db()
    assert documents.full_path == '/documents'
    assert nested.full_path == '/documents/doc'


@pytest.mark.django_db
def test_rename_directory_reparents(user):
    """Test moving under a new parent creates and links it."""
    reports = ensure_path(user.id, '/reports')
    _make_file(reports, 'q1.pdf')

    moved = rename_directory(reports.id, user.id, '/archive/2024/reports')

    parent = Directory.objects.get(owner=user, full_path='/archive/2024')
    assert moved.parent_id == parent.id
    assert File.objects.get(filename='q1.pdf').full_path == (
        '/archive/2024/reports/q1.pdf'
    )


@pytest.mark.django_db
def test_rename_directory_conflict(user):
    """Test renaming onto an existing directory is a conflict."""
    source = ensure_path(user.id, '/a')
    ensure_path(user.id, '/b')

    with pytest.raises(ConflictError):
        rename_directory(source.id, user.id, '/b')

    source.refresh_from_db()
    assert source.full_path == '/a'


@pytest.mark.django_db
def test_rename_directory_into_own_subtree(user):
    """Test a directory cannot become its own descendant."""
    source = ensure_path(user.id, '/a')

    with pytest.raises(InvalidOperationError):
        rename_directory(source.id, user.id, '/a/b')

    assert not Directory.objects.filter(full_path='/a/b').exists()


@pytest.mark.django_db
def test_rename_root_directory(user):
    """Test the root cannot be renamed."""
    root = ensure_path(user.id, '/')

    with pytest.raises(InvalidOperationError):
        rename_directory(root.id, user.id, '/elsewhere')


@pytest.mark.django_db
def test_rename_directory_same_path(user):
    """Test renaming to the current path changes nothing."""
    source = ensure_path(user.id, '/a')

    renamed = rename_directory(source.id, user.id, '/a/')

    assert renamed.full_path == '/a'


@pytest.mark.django_db
def test_rename_directory_of_other_owner(user, other_user):
    """Test another owner's directory is not found."""
    theirs = ensure_path(other_user.id, '/private')

    with pytest.raises(NotFoundError):
        rename_directory(theirs.id, user.id, '/mine')


@pytest.mark.django_db
def test_update_directory(user):
    """Test path and defaults can change in one call."""
    directory = ensure_path(user.id, '/old')

    updated = update_directory(
        directory.id,
        user.id,
        full_path='/new',
        default_permissions='public',
        default_expiration_policy='1d',
    )

    assert updated.full_path == '/new'
    assert updated.default_permissions == Permission.PUBLIC
    assert updated.default_expiration_policy == ExpirationPolicy.DAYS_1


@pytest.mark.django_db
def test_rename_directory_to_top_level(user):
    """Test a directory moved to the top level has no parent."""
    nested = ensure_path(user.id, '/a/b')

    moved = rename_directory(nested.id, user.id, '/b')

    moved.refresh_from_db()
    assert moved.full_path == '/b'
    assert moved.parent is None
    assert not Directory.objects.filter(owner=user, full_path='/').exists()


@pytest.mark.django_db
def test_rename_directory_onto_root(user):
    """Test no directory can take over the root path."""
    source = ensure_path(user.id, '/a')

    with pytest.raises(InvalidOperationError):
        rename_directory(source.id, user.id, '/')


@pytest.mark.django_db(transaction=True)
def test_rename_directory_failure_changes_nothing(user, monkeypatch):
    """Test a failing cascade rolls back the directory and its subtree."""
    proj = ensure_path(user.id, '/proj')
    sub = ensure_path(user.id, '/proj/sub')
    inner_file = _make_file(sub, 'a.txt')

    def _failing_bulk_update(*args, **kwargs):
        raise DatabaseError('disk I/O error')

    monkeypatch.setattr(File.objects, 'bulk_update', _failing_bulk_update)

    with pytest.raises(DatabaseError):
        rename_directory(proj.id, user.id, '/archive')

    proj.refresh_from_db()
    sub.refresh_from_db()
    inner_file.refresh_from_db()
    assert proj.full_path == '/proj'
    assert sub.full_path == '/proj/sub'
    assert inner_file.full_path == '/proj/sub/a.txt'
    assert not Directory.objects.filter(full_path__startswith='/archive').exists()


@pytest.mark.django_db
def test_update_directory_parent(user):
    """Test moving under another directory keeps the name."""
    reports = ensure_path(user.id, '/reports')
    _make_file(reports, 'q1.pdf')
    archive = ensure_path(user.id, '/archive')

    moved = update_directory(reports.id, user.id, parent_id=archive.id)

    assert moved.full_path == '/archive/reports'
    assert moved.parent_id == archive.id
    assert File.objects.get(filename='q1.pdf').full_path == (
        '/archive/reports/q1.pdf'
    )


@pytest.mark.django_db
@pytest.mark.parametrize('new_parent_path', ['/a', '/a/b', '/a/b/c'])
def test_update_directory_parent_inside_subtree(user, new_parent_path):
    """Test a directory cannot be moved under itself or a descendant."""
    source = ensure_path(user.id, '/a')
    ensure_path(user.id, '/a/b/c')
    new_parent = Directory.objects.get(owner=user, full_path=new_parent_path)

    with pytest.raises(InvalidOperationError):
        update_directory(source.id, user.id, parent_id=new_parent.id)

    source.refresh_from_db()
    assert source.full_path == '/a'


@pytest.mark.django_db
def test_update_directory_foreign_parent(user, other_user):
    """Test another owner's directory cannot become the parent."""
    source = ensure_path(user.id, '/mine')
    theirs = ensure_path(other_user.id, '/theirs')

    with pytest.raises(NotFoundError):
        update_directory(source.id, user.id, parent_id=theirs.id)


@pytest.mark.django_db
def test_update_directory_path_and_parent(user):
    """Test a move is given one way or the other, not both."""
    source = ensure_path(user.id, '/a')
    target = ensure_path(user.id, '/b')

    with pytest.raises(ValidationError):
        update_directory(
            source.id,
            user.id,
            full_path='/c/a',
            parent_id=target.id,
        )


@pytest.mark.django_db(transaction=True)
def test_ensure_path_converges_with_concurrent_insert(user, monkeypatch):
    """Test a row inserted by a racing call is reused, not duplicated."""
    original_get = QuerySet.get
    racing_rows = []

    def _get_with_racing_insert(queryset, *args, **kwargs):
        try:
            return original_get(queryset, *args, **kwargs)
        except Directory.DoesNotExist:
            if kwargs.get('full_path') == '/race' and not racing_rows:
                racing_rows.append(Directory.objects.create(
                    owner_id=kwargs['owner_id'],
                    full_path='/race',
                ))
            raise

    monkeypatch.setattr(QuerySet, 'get', _get_with_racing_insert)

    directory = ensure_path(user.id, '/race')

    assert directory.id == racing_rows[0].id
    assert Directory.objects.filter(owner=user, full_path='/race').count() == 1
    assert ensure_path(user.id, '/race/sub').parent_id == directory.id


@pytest.mark.django_db
def test_delete_directory_with_children(user):
    """Test a directory with subdirectories is never deleted."""
    parent = ensure_path(user.id, '/parent')
    ensure_path(user.id, '/parent/child')

    with pytest.raises(NotEmptyError) as exc_info:
        delete_directory(parent.id, user.id)

    assert exc_info.value.child_count == 1
    assert Directory.objects.filter(id=parent.id).exists()


@pytest.mark.django_db
def test_delete_directory_with_children_and_no_files(user):
    """Test the child check does not depend on file count."""
    parent = ensure_path(user.id, '/parent')
    ensure_path(user.id, '/parent/child')

    assert parent.files.count() == 0
    with pytest.raises(NotEmptyError):
        delete_directory(parent.id, user.id)


@pytest.mark.django_db
def test_delete_directory_removes_files(user):
    """Test files inside are deleted with the directory."""
    directory = ensure_path(user.id, '/tmp')
    _make_file(directory, 'a.txt')
    _make_file(directory, 'b.txt', status=FileStatus.FAILED)

    deleted = delete_directory(directory.id, user.id)

    assert deleted == 2
    assert not Directory.objects.filter(id=directory.id).exists()
    assert not File.objects.exists()


@pytest.mark.django_db
def test_delete_empty_directory(user):
    """Test deleting an empty directory reports zero files."""
    directory = ensure_path(user.id, '/empty')

    assert delete_directory(directory.id, user.id) == 0


@pytest.mark.django_db
def test_delete_root_directory(user):
    """Test the root cannot be deleted."""
    root = ensure_path(user.id, '/')

    with pytest.raises(InvalidOperationError):
        delete_directory(root.id, user.id)


@pytest.mark.django_db
def test_list_directories_by_parent(user):
    """Test listing direct children of a directory."""
    docs = ensure_path(user.id, '/docs')
    ensure_path(user.id, '/docs/a')
    ensure_path(user.id, '/docs/b/deep')

    children = list_directories(user.id, parent_id=docs.id)

    assert [child.full_path for child in children] == ['/docs/a', '/docs/b']


@pytest.mark.django_db
def test_list_directories_exact_path(user):
    """Test a non-recursive path lookup returns only that directory."""
    ensure_path(user.id, '/docs/a')

    listed = list_directories(user.id, path='/docs')

    assert [directory.full_path for directory in listed] == ['/docs']


@pytest.mark.django_db
def test_list_directories_recursive(user):
    """Test recursive listing covers the subtree and nothing beside it."""
    ensure_path(user.id, '/doc/a/b')
    ensure_path(user.id, '/documents')

    listed = list_directories(user.id, path='/doc', recursive=True)

    assert [directory.full_path for directory in listed] == ['/doc/a', '/doc/a/b']


@pytest.mark.django_db
def test_list_directories_counts(user, other_user):
    """Test listings carry file and subdirectory counts per owner."""
    docs = ensure_path(user.id, '/docs')
    ensure_path(user.id, '/docs/sub')
    _make_file(docs, 'a.txt')
    _make_file(docs, 'b.txt')
    ensure_path(other_user.id, '/docs')

    listed = list_directories(user.id, path='/docs').get()

    assert listed.file_count == 2
    assert listed.subdirectory_count == 1


@pytest.mark.django_db
def test_get_directory(user, other_user):
    """Test fetching details, and hiding other owners' directories."""
    docs = ensure_path(user.id, '/docs')
    ensure_path(user.id, '/docs/sub')
    _make_file(docs, 'a.txt')

    fetched = get_directory(docs.id, user.id)

    assert [child.full_path for child in fetched.children.all()] == ['/docs/sub']
    assert [item.filename for item in fetched.files.all()] == ['a.txt']
    assert fetched.file_count == 1
    with pytest.raises(NotFoundError):
        get_directory(docs.id, other_user.id)
