#!/usr/bin/env python3
"""
voice-studio-telephony - Operator CLI for phone number activation.

New numbers stay pending until the telephony vendor has routed them to our
SIP domain. Operators list them here and activate once a test call works.

Usage:
    voice-studio-telephony list
    voice-studio-telephony activate <agent-id>
    voice-studio-telephony trunks
    voice-studio-telephony numbers [--region MH]
    voice-studio-telephony buy <phone-number> --name <friendly-name>

Auth uses the internal API key (VOICE_STUDIO_API_KEY, falling back to
LIVEKIT_API_SECRET, same as the API).
"""
import argparse
import os
import sys

import requests


DEFAULT_BASE = os.environ.get("VOICE_STUDIO_URL", "http://localhost:3001")
DEFAULT_KEY = os.environ.get("VOICE_STUDIO_API_KEY") or os.environ.get("LIVEKIT_API_SECRET", "")


def _headers(args) -> dict:
    if not args.api_key:
        print("❌ No API key. Set VOICE_STUDIO_API_KEY or pass --api-key")
        sys.exit(1)
    return {"x-api-key": args.api_key}


def _request(args, method: str, path: str, **kwargs) -> requests.Response:
    url = args.url.rstrip("/") + f"/api/admin/telephony{path}"
    try:
        return requests.request(method, url, headers=_headers(args), timeout=10, **kwargs)
    except requests.ConnectionError:
        print(f"❌ Cannot connect to {args.url}")
        sys.exit(1)
    except requests.RequestException as e:
        print(f"❌ Request to {url} failed: {e}")
        sys.exit(1)


def cmd_list(args):
    """List telephony configs waiting for activation."""
    resp = _request(args, "GET", "/pending")
    if resp.status_code != 200:
        print(f"❌ Failed to fetch pending configs: {resp.status_code} - {resp.text[:200]}")
        sys.exit(1)

    configs = resp.json().get("configs", [])
    print("\n📋 Pending Telephony Configurations\n")
    print("=" * 80)
    if not configs:
        print("\n✅ No pending telephony configurations!\n")
        return

    print(f"\nFound {len(configs)} pending configuration(s):\n")
    for i, c in enumerate(configs, 1):
        print(f"{i}. Agent: {c.get('agentName', '?')}")
        print(f"   Agent ID: {c.get('agentConfigId')}")
        print(f"   Phone Number: {c.get('phoneNumber')}")
        print(f"   SIP Domain: {c.get('sipDomain')}")
        print(f"   Dispatch Rule: {c.get('dispatchRuleId') or 'N/A'}")
        print(f"   Created: {c.get('createdAt')}")
        print(f"\n   ⚡ To activate: voice-studio-telephony activate {c.get('agentConfigId')}\n")
        print("-" * 80)

    print("\n📝 Next Steps for Each Config:")
    print("   1. Verify the telephony provider has completed SIP configuration")
    print("   2. Test an inbound call to the phone number")
    print("   3. Run: voice-studio-telephony activate <agent-id>\n")


def cmd_activate(args):
    """Activate telephony for one agent."""
    print(f"\n⚡ Activating telephony for agent: {args.agent_id}\n")
    resp = _request(args, "POST", f"/{args.agent_id}/activate")
    if resp.status_code == 404:
        print("❌ No telephony configuration found for this agent")
        sys.exit(1)
    if resp.status_code != 200:
        print(f"❌ Failed to activate telephony: {resp.status_code} - {resp.text[:200]}")
        sys.exit(1)

    data = resp.json()
    if data.get("message") == "Telephony is already active":
        print("⚠️  Telephony is already active for this agent!")
        return

    print("✅ Telephony activated successfully!")
    print("   Status: ACTIVE")
    print(f"   Phone: {data.get('phoneNumber')}")
    print("\n   The agent can now receive calls at this number! 🎉\n")


def cmd_trunks(args):
    """List LiveKit SIP trunks."""
    resp = _request(args, "GET", "/trunks")
    if resp.status_code != 200:
        print(f"❌ Failed to list trunks: {resp.status_code} - {resp.text[:200]}")
        sys.exit(1)

    data = resp.json()
    for direction in ("inbound", "outbound"):
        trunks = data.get(direction, [])
        print(f"\n📞 {direction.title()} trunks ({len(trunks)})")
        for t in trunks:
            numbers = ", ".join(t.get("numbers") or []) or "-"
            print(f"   {t.get('sipTrunkId')}  {t.get('name')}  [{numbers}]  agent={t.get('agentConfigId') or '?'}")
    print()


def cmd_numbers(args):
    """Search numbers that can be bought in a region."""
    resp = _request(args, "GET", "/available-numbers", params={"region": args.region})
    if resp.status_code != 200:
        print(f"❌ Failed to search numbers: {resp.status_code} - {resp.text[:200]}")
        sys.exit(1)

    numbers = resp.json().get("numbers", [])
    print(f"\n🔎 {len(numbers)} number(s) available in {args.region}\n")
    for n in numbers:
        print(f"   {n.get('phoneNumber')}  {n.get('friendlyName') or ''}")
    print()


def cmd_buy(args):
    """Buy a number into the Exotel account."""
    resp = _request(
        args, "POST", "/numbers",
        json={"phoneNumber": args.phone_number, "friendlyName": args.name},
    )
    if resp.status_code != 201:
        print(f"❌ Failed to buy number: {resp.status_code} - {resp.text[:200]}")
        sys.exit(1)

    data = resp.json()
    print(f"✅ Purchased {data.get('phoneNumber')} (sid {data.get('sid')})")
    print("   Attach it to an agent from the dashboard.\n")


def main(argv=None):
    parser = argparse.ArgumentParser(
        prog="voice-studio-telephony",
        description="Voice Studio telephony admin - activation, numbers and SIP trunks",
    )
    parser.add_argument("--url", default=DEFAULT_BASE, help="API base URL")
    parser.add_argument("--api-key", default=DEFAULT_KEY, help="Internal API key (x-api-key)")

    sub = parser.add_subparsers(dest="command", help="Command")

    p_list = sub.add_parser("list", help="List pending telephony configs")
    p_list.set_defaults(func=cmd_list)

    p_activate = sub.add_parser("activate", help="Activate telephony for an agent")
    p_activate.add_argument("agent_id", help="Agent config id")
    p_activate.set_defaults(func=cmd_activate)

    p_trunks = sub.add_parser("trunks", help="List LiveKit SIP trunks")
    p_trunks.set_defaults(func=cmd_trunks)

    p_numbers = sub.add_parser("numbers", help="Search numbers available to buy")
    p_numbers.add_argument("--region", default="MH", help="Telecom circle (default MH)")
    p_numbers.set_defaults(func=cmd_numbers)

    p_buy = sub.add_parser("buy", help="Buy a number")
    p_buy.add_argument("phone_number", help="Number from 'numbers'")
    p_buy.add_argument("--name", required=True, help="Friendly name")
    p_buy.set_defaults(func=cmd_buy)

    args = parser.parse_args(argv)
    if not args.command:
        parser.print_help()
        return

    args.func(args)


if __name__ == "__main__":
    main()
