"""
Tests for the command-line interface.
"""

import json

import pytest

from reliabilitynet import __version__
from reliabilitynet import logger as logger_module
from reliabilitynet.app import main
from reliabilitynet.database import Business, Customer, Event, PropertyRecord, get_session


@pytest.fixture
def cli_env(tmp_path, monkeypatch):
    """Run the CLI from an empty directory with logs kept under tmp_path."""
    monkeypatch.setattr(logger_module, "_global_logger", None)
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("RELIABILITYNET_LOG_DIR", str(tmp_path / "logs"))
    monkeypatch.setenv("RELIABILITYNET_LOG_LEVEL", "WARNING")
    db_path = tmp_path / "cli.db"
    main(["--db", str(db_path), "init-db"])
    return db_path


class TestCli:
    """Test CLI commands end to end."""

    def test_version(self, cli_env, capsys):
        capsys.readouterr()
        main(["--version"])
        assert capsys.readouterr().out.strip() == __version__

    def test_init_db(self, cli_env):
        assert cli_env.exists()

    def test_resolve(self, cli_env, capsys):
        main(["--db", str(cli_env), "resolve", "--phone", "555-123-4567"])
        main(["--db", str(cli_env), "resolve", "--phone", "(555) 123-4567"])
        out = capsys.readouterr().out
        assert "Status: created" in out
        assert "Status: matched" in out

    def test_resolve_without_contact(self, cli_env):
        with pytest.raises(SystemExit):
            main(["--db", str(cli_env), "resolve", "--phone", "12"])

    def test_apply_event_and_lookup(self, cli_env, capsys):
        main(["--db", str(cli_env), "apply-event", "--phone", "555-123-4567", "--severity", "5"])
        main(["--db", str(cli_env), "lookup", "--query", "555 123 4567"])
        out = capsys.readouterr().out
        assert out.count("Risk tier: high") == 2
        assert "Seen by businesses: 1" in out

    def test_apply_event_invalid_severity(self, cli_env, capsys):
        with pytest.raises(SystemExit) as exc_info:
            main(["--db", str(cli_env), "apply-event", "--phone", "555-123-4567", "--severity", "9"])
        assert exc_info.value.code == 2
        assert "Invalid" in capsys.readouterr().out

    def test_lookup_miss(self, cli_env, capsys):
        main(["--db", str(cli_env), "lookup", "--email", "nobody@example.com"])
        assert "Not found in network." in capsys.readouterr().out

    def test_lookup_name_query_searches_property_records(self, cli_env, capsys):
        session = get_session(cli_env)
        session.add_all([
            PropertyRecord(address_full="12 ELM ST", owner_name="DOE, JANE", municipality="Media"),
            PropertyRecord(address_full="9 OAK AVE", owner_name="SMITH, JOHN"),
        ])
        session.commit()
        session.close()
        capsys.readouterr()

        main(["--db", str(cli_env), "lookup", "--query", "Jane Doe"])
        out = capsys.readouterr().out
        assert "Property records: 1" in out
        assert "12 ELM ST | DOE, JANE | Media" in out
        assert "Not found in network." not in out

    def test_lookup_address_shows_linked_property(self, cli_env, capsys):
        session = get_session(cli_env)
        session.add(PropertyRecord(address_full="12 ELM ST, MEDIA, PA 19063", owner_name="DOE, JANE",
                                   property_class="Residential"))
        session.commit()
        session.close()
        main(["--db", str(cli_env), "bootstrap-properties"])
        capsys.readouterr()

        main(["--db", str(cli_env), "lookup", "--address", "12 Elm Street, Media, PA 19063"])
        out = capsys.readouterr().out
        assert "Linked property:" in out
        assert "DOE, JANE" in out
        assert "Property records: 1" in out

    def test_lookup_unclassifiable_query_rejected(self, cli_env):
        with pytest.raises(SystemExit):
            main(["--db", str(cli_env), "lookup", "--query", "???"])

    def test_bootstrap_report_counts_linked(self, cli_env, capsys):
        main(["--db", str(cli_env), "resolve", "--address", "40 Pine Road, Media, PA 19063"])
        session = get_session(cli_env)
        session.add(PropertyRecord(address_full="40 PINE RD, MEDIA, PA 19063", owner_name="ROE, ANN",
                                   property_class="Residential"))
        session.commit()
        session.close()
        capsys.readouterr()

        main(["--db", str(cli_env), "bootstrap-properties"])
        report = json.loads(capsys.readouterr().out)
        assert report["linked"] == 1
        assert report["created"] + report["linked"] + report["skipped"] == report["total"]

    def test_score_and_sync(self, cli_env, capsys):
        session = get_session(cli_env)
        business = Business(name="Lakeside Cleaning")
        session.add(business)
        session.commit()
        customer = Customer(business_id=business.id, full_name="Jane Doe", phone="555-123-4567")
        session.add(customer)
        session.commit()
        session.add(Event(customer_id=customer.id, business_id=business.id, severity=5))
        session.commit()
        business_id, customer_id = business.id, customer.id
        session.close()
        capsys.readouterr()

        main(["--db", str(cli_env), "score", "--business", business_id, "--customer", customer_id])
        scored = json.loads(capsys.readouterr().out)
        assert scored["score"] == 70
        assert scored["percentile"] == 100

        main(["--db", str(cli_env), "sync-business", "--business", business_id])
        report = json.loads(capsys.readouterr().out)
        assert report["synced"] == 1

        main(["--db", str(cli_env), "sync-business", "--business", business_id])
        assert "already synced" in capsys.readouterr().out

    def test_unknown_business(self, cli_env):
        with pytest.raises(SystemExit) as exc_info:
            main(["--db", str(cli_env), "sync-business", "--business", "missing"])
        assert "missing" in str(exc_info.value.code)
