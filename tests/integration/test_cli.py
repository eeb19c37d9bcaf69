#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Tests for the schema-ledger command line.

main() runs its own event loop, so these tests are synchronous.
"""
import json

import pytest

from schemaledger.cli import build_parser, main


@pytest.fixture
def db_args(tmp_path, monkeypatch):
    monkeypatch.delenv('SCHEMALEDGER_DATABASE_URL', raising=False)
    return ['--database-url', f"sqlite:///{tmp_path / 'cli.db'}"]


@pytest.fixture
def batch_file(tmp_path):
    path = tmp_path / 'batch.json'
    path.write_text(json.dumps({
        'versioned': [
            {'version': '002', 'description': 'add b', 'filename': 'V002__b.sql',
             'content': 'CREATE TABLE b (id INTEGER);'},
            {'version': '001', 'description': 'add a', 'filename': 'V001__a.sql',
             'content': 'CREATE TABLE a (id INTEGER);'},
        ],
        'repeatable': [
            {'filename': 'R__view.sql', 'description': 'view',
             'content': 'CREATE VIEW IF NOT EXISTS v AS SELECT id FROM a;'},
        ],
    }))
    return path


class TestParser:

    def test_subcommand_required(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args([])

    def test_register_rollback_needs_source(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args(['register-rollback', '001'])


class TestCommands:

    def test_install_and_info(self, db_args, capsys):
        assert main(db_args + ['install']) == 0
        assert main(db_args + ['info']) == 0
        out = capsys.readouterr().out
        assert 'Current version:  0' in out
        assert 'Locked:           no' in out

    def test_migrate_status_and_validate(self, db_args, batch_file, capsys):
        main(db_args + ['install'])
        assert main(db_args + ['migrate', str(batch_file)]) == 0
        out = capsys.readouterr().out
        assert 'Applied 3 migrations' in out
        assert 'Current schema version: 002' in out

        assert main(db_args + ['migrate', str(batch_file)]) == 0
        assert 'already up-to-date' in capsys.readouterr().out

        assert main(db_args + ['status']) == 0
        assert 'R__view.sql' in capsys.readouterr().out

        assert main(db_args + ['validate', str(batch_file)]) == 0
        assert '[OK] 001' in capsys.readouterr().out

    def test_validate_reports_modified(self, db_args, batch_file, tmp_path, capsys):
        main(db_args + ['install'])
        main(db_args + ['migrate', str(batch_file)])
        batch = json.loads(batch_file.read_text())
        batch['versioned'][0]['content'] = 'CREATE TABLE b (id BIGINT);'
        edited = tmp_path / 'edited.json'
        edited.write_text(json.dumps(batch))

        assert main(db_args + ['validate', str(edited)]) == 1
        assert main(db_args + ['migrate', str(edited)]) == 1
        assert 'Checksum mismatch' in capsys.readouterr().err

    def test_rollback_flow(self, db_args, batch_file, capsys):
        main(db_args + ['install'])
        main(db_args + ['migrate', str(batch_file)])

        assert main(db_args + ['rollback', '002']) == 1
        assert 'No rollback script' in capsys.readouterr().err

        assert main(db_args + ['register-rollback', '002', '--script', 'DROP TABLE b;']) == 0
        assert main(db_args + ['rollback-candidates']) == 0
        assert '✓ 002' in capsys.readouterr().out

        assert main(db_args + ['rollback-to', '001']) == 0
        assert 'Rolled back 1 migrations' in capsys.readouterr().out

    def test_baseline_conflict(self, db_args, batch_file, capsys):
        main(db_args + ['install'])
        assert main(db_args + ['baseline', '100']) == 0
        main(db_args + ['migrate', str(batch_file)])
        capsys.readouterr()
        assert main(db_args + ['baseline', '200']) == 1
        assert 'Cannot set baseline' in capsys.readouterr().err

    def test_lock_commands(self, db_args, capsys):
        main(db_args + ['install'])
        assert main(db_args + ['lock']) == 0
        assert main(db_args + ['lock']) == 1
        assert main(db_args + ['lock-holder']) == 0
        assert '"principal"' in capsys.readouterr().out
        assert main(db_args + ['unlock']) == 0
        assert main(db_args + ['lock-holder']) == 0
        assert 'Migration lock is free' in capsys.readouterr().out

    def test_lock_freezes_migrate_until_unlock(self, db_args, batch_file, capsys):
        main(db_args + ['install'])
        assert main(db_args + ['lock']) == 0
        capsys.readouterr()

        assert main(db_args + ['migrate', str(batch_file)]) == 1
        assert 'Timeout acquiring migration lock' in capsys.readouterr().err

        assert main(db_args + ['unlock']) == 0
        assert main(db_args + ['migrate', str(batch_file)]) == 0
        assert 'Applied 3 migrations' in capsys.readouterr().out

    def test_uninstall_requires_yes(self, db_args):
        main(db_args + ['install'])
        assert main(db_args + ['uninstall']) == 1
        assert main(db_args + ['uninstall', '--yes']) == 0

    def test_clear_failed(self, db_args, tmp_path, capsys):
        main(db_args + ['install'])
        bad = tmp_path / 'bad.json'
        bad.write_text(json.dumps({'versioned': [
            {'version': '001', 'content': 'SELECT * FROM nowhere;'},
        ]}))
        assert main(db_args + ['migrate', str(bad)]) == 1
        assert main(db_args + ['clear-failed']) == 0
        assert 'Cleared 1 failed' in capsys.readouterr().out


class TestBatchFileErrors:

    def test_missing_batch_file(self, db_args, tmp_path, capsys):
        main(db_args + ['install'])
        assert main(db_args + ['migrate', str(tmp_path / 'absent.json')]) == 1
        err = capsys.readouterr().err
        assert err.startswith('✗ ')
        assert 'absent.json' in err

    def test_malformed_batch_file(self, db_args, tmp_path, capsys):
        main(db_args + ['install'])
        broken = tmp_path / 'broken.json'
        broken.write_text('{"versioned": [')
        assert main(db_args + ['migrate', str(broken)]) == 1
        assert capsys.readouterr().err.startswith('✗ ')

    def test_batch_file_must_be_object(self, db_args, tmp_path, capsys):
        main(db_args + ['install'])
        listing = tmp_path / 'list.json'
        listing.write_text('[]')
        assert main(db_args + ['validate', str(listing)]) == 1
        assert capsys.readouterr().err.startswith('✗ ')
