import unittest
from unittest.mock import patch

import requests

from idrac_client.dell_redfish.errors import AuthenticationError, SessionLimitExceeded
from idrac_client.dell_redfish.models import AuthMode
from idrac_client.tests.fakes import (
    SESSIONS,
    FakeIdrac,
    make_client,
    make_response,
    quota_exceeded,
    session_created,
)

SYSTEM = "/redfish/v1/Systems/System.Embedded.1"
BASIC_ROOT_CALVIN = "Basic cm9vdDpjYWx2aW4="


class SessionCreationTests(unittest.TestCase):
    def test_first_surviving_strategy_wins_and_token_is_used_afterwards(self):
        fake = FakeIdrac({
            ("POST", SESSIONS): [
                make_response(401),
                make_response(415),
                make_response(500),
                session_created(token="tok-4"),
            ],
            ("GET", SYSTEM): [make_response(200, json_body={"PowerState": "On"})],
        })
        client = make_client(fake)

        self.assertTrue(client.authenticator.create())
        self.assertEqual(client.state.token, "tok-4")
        self.assertEqual(client.state.location, f"{SESSIONS}/1")
        self.assertIs(client.state.mode, AuthMode.TOKEN_AUTH)

        response = client.authenticated_request("GET", SYSTEM)

        self.assertEqual(response.status_code, 200)
        system_call = fake.calls_to("GET", SYSTEM)[0]
        self.assertEqual(system_call.headers["X-Auth-Token"], "tok-4")
        self.assertNotIn("Authorization", system_call.headers)

    def test_strategies_are_tried_in_order(self):
        fake = FakeIdrac({("POST", SESSIONS): [make_response(401)]})
        client = make_client(fake)

        client.authenticator.create()

        posts = fake.calls_to("POST", SESSIONS)
        self.assertEqual(len(posts), 4)

        self.assertEqual(posts[0].headers["Content-Type"], "application/json")
        self.assertNotIn("Authorization", posts[0].headers)
        self.assertEqual(posts[0].json, {"UserName": "root", "Password": "calvin"})

        self.assertEqual(posts[1].headers["Content-Type"], "application/json")
        self.assertEqual(posts[1].headers["Authorization"], BASIC_ROOT_CALVIN)

        self.assertEqual(posts[2].headers["Content-Type"], "application/x-www-form-urlencoded")
        self.assertEqual(posts[2].headers["Authorization"], BASIC_ROOT_CALVIN)
        self.assertEqual(posts[2].data, "UserName=root&Password=calvin")

        self.assertEqual(posts[3].headers["Content-Type"], "application/x-www-form-urlencoded")
        self.assertNotIn("Authorization", posts[3].headers)

    def test_unreachable_idrac_ends_create_without_direct_mode(self):
        fake = FakeIdrac({
            ("POST", SESSIONS): [requests.ConnectionError("refused"), session_created(token="tok-2")],
        })
        client = make_client(fake)

        self.assertFalse(client.authenticator.create())
        self.assertIs(client.authenticator.current_mode(), AuthMode.TOKEN_AUTH)
        self.assertEqual(len(fake.calls_to("POST", SESSIONS)), 1)

        self.assertTrue(client.authenticator.create())
        self.assertEqual(client.state.token, "tok-2")

    def test_absolute_location_is_stored_as_path(self):
        fake = FakeIdrac({
            ("POST", SESSIONS): [
                make_response(201, headers={
                    "X-Auth-Token": "tok",
                    "Location": f"https://10.0.0.5{SESSIONS}/7",
                }),
            ],
        })
        client = make_client(fake)

        client.authenticator.create()

        self.assertEqual(client.state.location, f"{SESSIONS}/7")

    @patch("time.sleep")
    def test_all_strategies_failing_switches_to_direct_mode_for_good(self, _sleep):
        fake = FakeIdrac({
            ("POST", SESSIONS): [quota_exceeded()],
            ("GET", SESSIONS): [make_response(500)],
            ("GET", SYSTEM): [make_response(200, json_body={})],
        })
        client = make_client(fake)

        self.assertFalse(client.authenticator.create())
        self.assertIs(client.state.mode, AuthMode.BASIC_AUTH_DIRECT)
        self.assertIs(client.authenticator.current_mode(), AuthMode.BASIC_AUTH_DIRECT)
        self.assertIsNone(client.state.token)

        client.authenticated_request("GET", SYSTEM)
        system_call = fake.calls_to("GET", SYSTEM)[0]
        self.assertEqual(system_call.headers["Authorization"], BASIC_ROOT_CALVIN)
        self.assertNotIn("X-Auth-Token", system_call.headers)

        # No further session attempts once direct
        posts_before = len(fake.calls_to("POST", SESSIONS))
        self.assertFalse(client.authenticator.create())
        client.authenticated_request("GET", SYSTEM)
        self.assertEqual(len(fake.calls_to("POST", SESSIONS)), posts_before)


class SessionQuotaTests(unittest.TestCase):
    @patch("time.sleep")
    def test_quota_evicts_sessions_then_retries_same_strategy(self, mock_sleep):
        fake = FakeIdrac({
            ("POST", SESSIONS): [quota_exceeded(), session_created(token="fresh")],
            ("GET", SESSIONS): [make_response(200, json_body={"Members": [
                {"@odata.id": f"{SESSIONS}/11"},
                {"@odata.id": f"{SESSIONS}/12"},
            ]})],
            ("DELETE", f"{SESSIONS}/11"): [make_response(204)],
            ("DELETE", f"{SESSIONS}/12"): [make_response(200)],
        })
        client = make_client(fake, session_delete_delay=1.0, session_settle_delay=3.0)

        self.assertTrue(client.authenticator.create())
        self.assertEqual(client.state.token, "fresh")
        self.assertFalse(client.state.sessions_maxed)

        # Listing and deletes use Basic Auth
        listing = fake.calls_to("GET", SESSIONS)[0]
        self.assertEqual(listing.headers["Authorization"], BASIC_ROOT_CALVIN)
        self.assertEqual(len(fake.calls_to("DELETE", f"{SESSIONS}/11")), 1)
        self.assertEqual(len(fake.calls_to("DELETE", f"{SESSIONS}/12")), 1)

        # The retried POST is the same (first) strategy
        posts = fake.calls_to("POST", SESSIONS)
        self.assertEqual(len(posts), 2)
        self.assertNotIn("Authorization", posts[1].headers)
        self.assertEqual(posts[1].headers["Content-Type"], "application/json")

        # One pause between the two deletes, one settle pause before the retry
        mock_sleep.assert_any_call(1.0)
        mock_sleep.assert_any_call(3.0)
        self.assertEqual(mock_sleep.call_count, 2)

    @patch("time.sleep")
    def test_eviction_happens_at_most_once_per_create(self, _sleep):
        fake = FakeIdrac({
            ("POST", SESSIONS): [quota_exceeded()],
            ("GET", SESSIONS): [make_response(200, json_body={"Members": [{"@odata.id": f"{SESSIONS}/3"}]})],
            ("DELETE", f"{SESSIONS}/3"): [make_response(204)],
        })
        client = make_client(fake)

        self.assertFalse(client.authenticator.create())

        self.assertEqual(len(fake.calls_to("GET", SESSIONS)), 1)
        # Four strategies plus the single retry after eviction
        self.assertEqual(len(fake.calls_to("POST", SESSIONS)), 5)
        self.assertTrue(client.state.sessions_maxed)
        self.assertTrue(client.state.direct_mode)

    def test_quota_without_auto_delete_does_not_evict(self):
        fake = FakeIdrac({("POST", SESSIONS): [quota_exceeded()]})
        client = make_client(fake, auto_delete_sessions=False)

        self.assertFalse(client.authenticator.create())
        self.assertEqual(fake.calls_to("GET", SESSIONS), [])

    def test_login_require_session_reports_quota(self):
        fake = FakeIdrac({("POST", SESSIONS): [quota_exceeded()]})
        client = make_client(fake, auto_delete_sessions=False)

        with self.assertRaises(SessionLimitExceeded):
            client.login(require_session=True)

    def test_login_require_session_raises_authentication_error(self):
        fake = FakeIdrac({("POST", SESSIONS): [make_response(401)]})
        client = make_client(fake)

        with self.assertRaises(AuthenticationError) as ctx:
            client.login(require_session=True)
        self.assertNotIsInstance(ctx.exception, SessionLimitExceeded)

    def test_login_falls_back_to_direct_mode(self):
        fake = FakeIdrac({("POST", SESSIONS): [make_response(401)]})
        client = make_client(fake)

        self.assertFalse(client.login())
        self.assertTrue(client.direct_mode)


class SessionCollectionTests(unittest.TestCase):
    def test_old_redfish_uses_legacy_collection(self):
        fake = FakeIdrac(redfish_version="1.6.0")
        client = make_client(fake)

        client.authenticator.create()

        self.assertEqual(len(fake.calls_to("POST", "/redfish/v1/Sessions")), 1)
        self.assertEqual(client.authenticator.session_collection(), "/redfish/v1/Sessions")

    def test_new_redfish_uses_session_service(self):
        fake = FakeIdrac(redfish_version="1.17.0")
        client = make_client(fake)

        self.assertEqual(client.authenticator.session_collection(), SESSIONS)

    def test_unreadable_service_root_defaults_to_session_service(self):
        fake = FakeIdrac({("GET", "/redfish/v1"): [requests.ConnectionError("down")]})
        client = make_client(fake)

        self.assertEqual(client.authenticator.session_collection(), SESSIONS)

    def test_failed_service_root_read_is_not_cached(self):
        fake = FakeIdrac({
            ("GET", "/redfish/v1"): [
                requests.ConnectionError("down"),
                make_response(200, json_body={"RedfishVersion": "1.6.0"}),
            ],
        })
        client = make_client(fake)

        self.assertEqual(client.authenticator.session_collection(), SESSIONS)
        self.assertEqual(client.authenticator.session_collection(), "/redfish/v1/Sessions")
        self.assertEqual(client.authenticator.session_collection(), "/redfish/v1/Sessions")

        self.assertEqual(len(fake.calls_to("GET", "/redfish/v1")), 2)

    def test_collection_is_probed_once(self):
        fake = FakeIdrac()
        client = make_client(fake)

        client.authenticator.session_collection()
        client.authenticator.session_collection()

        self.assertEqual(len(fake.calls_to("GET", "/redfish/v1")), 1)


class SessionDeletionTests(unittest.TestCase):
    def test_delete_uses_token_on_session_location(self):
        fake = FakeIdrac()
        client = make_client(fake)
        client.authenticator.create()

        self.assertTrue(client.logout())

        delete_call = fake.calls_to("DELETE", f"{SESSIONS}/1")[0]
        self.assertEqual(delete_call.headers["X-Auth-Token"], "token-1")
        self.assertIsNone(client.state.token)
        self.assertIsNone(client.state.location)

    def test_delete_falls_back_to_session_id_with_basic_auth(self):
        fake = FakeIdrac({("DELETE", f"{SESSIONS}/1"): [make_response(401), make_response(204)]})
        client = make_client(fake)
        client.authenticator.create()

        self.assertTrue(client.logout())

        deletes = fake.calls_to("DELETE", f"{SESSIONS}/1")
        self.assertEqual(len(deletes), 2)
        self.assertEqual(deletes[1].headers["Authorization"], BASIC_ROOT_CALVIN)

    def test_delete_never_raises(self):
        fake = FakeIdrac({("DELETE", f"{SESSIONS}/1"): [RuntimeError("boom")]})
        client = make_client(fake)
        client.authenticator.create()

        self.assertFalse(client.logout())
        self.assertIsNone(client.state.token)

    def test_delete_without_session_is_a_noop(self):
        fake = FakeIdrac()
        client = make_client(fake)

        self.assertFalse(client.logout())
        self.assertEqual(fake.calls, [])


@patch("time.sleep")
class ClearAllSessionsTests(unittest.TestCase):
    def test_deletes_every_listed_session_with_basic_auth(self, _sleep):
        members = [{"@odata.id": f"{SESSIONS}/5"}, {"@odata.id": f"{SESSIONS}/6"}]
        fake = FakeIdrac({("GET", SESSIONS): [make_response(200, json_body={"Members": members})]})
        client = make_client(fake)

        self.assertTrue(client.authenticator.clear_all_sessions())

        for session_id in (5, 6):
            delete = fake.calls_to("DELETE", f"{SESSIONS}/{session_id}")[0]
            self.assertEqual(delete.headers["Authorization"], BASIC_ROOT_CALVIN)

    def test_failed_delete_is_reported(self, _sleep):
        fake = FakeIdrac({
            ("GET", SESSIONS): [make_response(200, json_body={"Members": [{"@odata.id": f"{SESSIONS}/5"}]})],
            ("DELETE", f"{SESSIONS}/5"): [make_response(403)],
        })

        self.assertFalse(make_client(fake).authenticator.clear_all_sessions())

    def test_listing_failure(self, _sleep):
        fake = FakeIdrac({("GET", SESSIONS): [make_response(500)]})

        self.assertFalse(make_client(fake).authenticator.clear_all_sessions())
        self.assertEqual(fake.calls_to("DELETE", f"{SESSIONS}/5"), [])


if __name__ == "__main__":
    unittest.main()
