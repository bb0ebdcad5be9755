"""Tests for the stream copier."""
import os
import sys

import pytest

import rotlog
from rotlog import apply_permissions, copy_stream


def test_lines_get_exactly_one_newline(tmp_path):
    log = tmp_path / 'log'

    count = copy_stream(log, [b'a\n', b'b', b'c\r\n', b'\n'])

    assert count == 4
    assert log.read_bytes() == b'a\nb\nc\r\n\n'


def test_creates_missing_file(tmp_path):
    log = tmp_path / 'log'
    assert copy_stream(log, []) == 0
    assert log.exists()
    assert log.read_bytes() == b''


def test_appends_to_existing_file(tmp_path):
    log = tmp_path / 'log'
    log.write_bytes(b'old\n')

    copy_stream(log, [b'new\n'])

    assert log.read_bytes() == b'old\nnew\n'


def test_each_line_is_written_before_the_next_is_read(tmp_path):
    log = tmp_path / 'log'

    def source():
        yield b'first\n'
        assert log.read_bytes() == b'first\n'
        yield b'second\n'
        assert log.read_bytes() == b'first\nsecond\n'

    assert copy_stream(log, source()) == 2


def test_large_line_is_written_whole_before_next_read(tmp_path):
    log = tmp_path / 'log'
    big = b'x' * (4 * 1024 * 1024) + b'\n'

    def source():
        yield big
        assert log.read_bytes() == big
        yield b'tail'

    assert copy_stream(log, source()) == 2
    assert log.read_bytes() == big + b'tail\n'


def test_source_error_propagates_after_partial_write(tmp_path):
    log = tmp_path / 'log'

    def source():
        yield b'kept\n'
        raise RuntimeError('producer died')

    with pytest.raises(RuntimeError):
        copy_stream(log, source())
    assert log.read_bytes() == b'kept\n'


def test_mode_is_applied(tmp_path):
    log = tmp_path / 'log'

    copy_stream(log, [b'x\n'], mode=0o600)

    assert log.stat().st_mode & 0o777 == 0o600


def test_permissions_applied_in_order(tmp_path, monkeypatch):
    calls = []
    monkeypatch.setattr(rotlog.os, 'chmod', lambda path, mode: calls.append(('chmod', mode)))
    monkeypatch.setattr(rotlog.shutil, 'chown', lambda path, user=None, group=None: calls.append(('chown', user, group)))

    apply_permissions(tmp_path / 'log', user='alice', group='1001', mode=0o640)

    assert calls == [('chmod', 0o640), ('chown', 'alice', None), ('chown', None, 1001)]


def test_nothing_applied_when_not_requested(tmp_path, monkeypatch):
    calls = []
    monkeypatch.setattr(rotlog.os, 'chmod', lambda *a, **kw: calls.append('chmod'))
    monkeypatch.setattr(rotlog.shutil, 'chown', lambda *a, **kw: calls.append('chown'))

    copy_stream(tmp_path / 'log', [b'x\n'])

    assert calls == []


@pytest.mark.skipif(sys.platform == 'win32', reason='POSIX ownership')
def test_owner_and_group_of_current_user(tmp_path):
    import grp
    import pwd

    log = tmp_path / 'log'
    user = pwd.getpwuid(os.getuid()).pw_name
    group = grp.getgrgid(os.getgid()).gr_name

    copy_stream(log, [b'x\n'], user=user, group=group)

    assert log.stat().st_uid == os.getuid()
    assert log.stat().st_gid == os.getgid()


@pytest.mark.skipif(sys.platform == 'win32', reason='POSIX ownership')
def test_unknown_user_is_fatal(tmp_path):
    with pytest.raises(LookupError):
        copy_stream(tmp_path / 'log', [b'never\n'], user='no-such-user-rotlog')
    assert (tmp_path / 'log').read_bytes() == b''


def test_verbose_reports_permission_changes(tmp_path, capsys):
    rotlog.setup_logging(verbose=True)

    copy_stream(tmp_path / 'log', [], mode=0o644)

    assert 'chmod: ' in capsys.readouterr().out
