"""
Tests for the voice-studio-telephony operator CLI
"""

from unittest.mock import MagicMock, patch

import pytest
import requests

from app import cli


def _response(status_code=200, payload=None, text=""):
    resp = MagicMock()
    resp.status_code = status_code
    resp.json.return_value = payload or {}
    resp.text = text
    return resp


class TestTelephonyCLI:
    def test_list_pending(self, capsys):
        payload = {"total": 1, "configs": [{
            "agentName": "Clinic", "agentConfigId": "abcd1234-full", "phoneNumber": "02247790694",
            "sipDomain": "project.sip.livekit.cloud", "dispatchRuleId": "SDR_1", "createdAt": "2026-10-17T10:00:00",
        }]}
        with patch("app.cli.requests.request", return_value=_response(payload=payload)) as request:
            cli.main(["--url", "http://api.test", "--api-key", "k-1", "list"])

        method, url = request.call_args.args
        assert (method, url) == ("GET", "http://api.test/api/admin/telephony/pending")
        assert request.call_args.kwargs["headers"] == {"x-api-key": "k-1"}
        out = capsys.readouterr().out
        assert "Found 1 pending configuration(s)" in out
        assert "voice-studio-telephony activate abcd1234-full" in out

    def test_list_empty(self, capsys):
        with patch("app.cli.requests.request", return_value=_response(payload={"total": 0, "configs": []})):
            cli.main(["--api-key", "k-1", "list"])
        assert "No pending telephony configurations" in capsys.readouterr().out

    def test_activate(self, capsys):
        payload = {"message": "Telephony activated successfully", "status": "active",
                   "phoneNumber": "02247790694", "isActive": True}
        with patch("app.cli.requests.request", return_value=_response(payload=payload)) as request:
            cli.main(["--url", "http://api.test", "--api-key", "k-1", "activate", "abcd1234-full"])

        assert request.call_args.args == ("POST", "http://api.test/api/admin/telephony/abcd1234-full/activate")
        assert "Phone: 02247790694" in capsys.readouterr().out

    def test_activate_missing_config(self):
        with patch("app.cli.requests.request", return_value=_response(404)):
            with pytest.raises(SystemExit) as exc_info:
                cli.main(["--api-key", "k-1", "activate", "nope"])
        assert exc_info.value.code == 1

    def test_requires_api_key(self):
        with pytest.raises(SystemExit):
            cli.main(["--api-key", "", "list"])

    def test_connection_error(self, capsys):
        with patch("app.cli.requests.request", side_effect=requests.ConnectionError()):
            with pytest.raises(SystemExit):
                cli.main(["--url", "http://down.test", "--api-key", "k-1", "list"])
        assert "Cannot connect to http://down.test" in capsys.readouterr().out

    def test_request_failure_exits(self, capsys):
        with patch("app.cli.requests.request", side_effect=requests.ReadTimeout("read timed out")):
            with pytest.raises(SystemExit) as exc_info:
                cli.main(["--url", "http://api.test", "--api-key", "k-1", "list"])
        assert exc_info.value.code == 1
        out = capsys.readouterr().out
        assert "Request to http://api.test/api/admin/telephony/pending failed" in out

    def test_base_url_with_path(self):
        with patch("app.cli.requests.request", return_value=_response(payload={"configs": []})) as request:
            cli.main(["--url", "http://api.test/studio/", "--api-key", "k-1", "list"])
        assert request.call_args.args[1] == "http://api.test/studio/api/admin/telephony/pending"

    def test_trunks(self, capsys):
        payload = {
            "inbound": [{"sipTrunkId": "ST_in", "name": "trunk-in-abcd1234",
                         "numbers": ["02247790694"], "agentConfigId": "abcd1234"}],
            "outbound": [],
        }
        with patch("app.cli.requests.request", return_value=_response(payload=payload)) as request:
            cli.main(["--url", "http://api.test", "--api-key", "k-1", "trunks"])

        assert request.call_args.args == ("GET", "http://api.test/api/admin/telephony/trunks")
        out = capsys.readouterr().out
        assert "Inbound trunks (1)" in out
        assert "ST_in  trunk-in-abcd1234  [02247790694]  agent=abcd1234" in out
        assert "Outbound trunks (0)" in out

    def test_numbers(self, capsys):
        payload = {"region": "KA", "numbers": [{"phoneNumber": "08012345678", "friendlyName": "Bengaluru"}]}
        with patch("app.cli.requests.request", return_value=_response(payload=payload)) as request:
            cli.main(["--url", "http://api.test", "--api-key", "k-1", "numbers", "--region", "KA"])

        assert request.call_args.args == ("GET", "http://api.test/api/admin/telephony/available-numbers")
        assert request.call_args.kwargs["params"] == {"region": "KA"}
        assert "1 number(s) available in KA" in capsys.readouterr().out

    def test_buy(self, capsys):
        payload = {"sid": "exo-9", "phoneNumber": "08012345678", "friendlyName": "Front desk"}
        with patch("app.cli.requests.request", return_value=_response(201, payload=payload)) as request:
            cli.main(["--url", "http://api.test", "--api-key", "k-1", "buy", "08012345678", "--name", "Front desk"])

        assert request.call_args.args == ("POST", "http://api.test/api/admin/telephony/numbers")
        assert request.call_args.kwargs["json"] == {"phoneNumber": "08012345678", "friendlyName": "Front desk"}
        assert "Purchased 08012345678 (sid exo-9)" in capsys.readouterr().out

    def test_buy_failure(self):
        with patch("app.cli.requests.request", return_value=_response(500, text="Failed to purchase number")):
            with pytest.raises(SystemExit) as exc_info:
                cli.main(["--api-key", "k-1", "buy", "08012345678", "--name", "Front desk"])
        assert exc_info.value.code == 1
