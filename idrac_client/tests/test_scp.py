import json
import unittest
from unittest.mock import patch

from idrac_client.dell_redfish import endpoints
from idrac_client.dell_redfish.errors import DellRedfishError, OperationFailed, OperationTimeout, ProtocolViolation
from idrac_client.dell_redfish.models import ConfigComponent, ConfigProfile, OperationState
from idrac_client.dell_redfish.scp import (
    hash_to_scp,
    merge_scp,
    normalize_enabled_value,
    profile_components,
    scp_to_hash,
    set_scp_attribute,
)
from idrac_client.tests.fakes import FakeIdrac, extended_error, make_client, make_response

TASK_PATH = "/redfish/v1/TaskService/Tasks/JID_777"

EXPORTED = {
    "SystemConfiguration": {
        "Model": "PowerEdge R640",
        "ServiceTag": "ABC1234",
        "TimeStamp": "Tue Oct 14 10:00:00 2025",
        "Comments": [{"Comment": "Export type is Normal,JSON"}],
        "Components": [
            {
                "FQDD": "iDRAC.Embedded.1",
                "Attributes": [
                    {"Name": "IPv4Static.1#Address", "Value": "10.0.0.5", "Set On Import": "True"},
                    {"Name": "Users.2#UserName", "Value": "root", "Set On Import": "True"},
                    {"Name": "SNMP.1#AgentEnable", "Value": "Enabled", "Set On Import": "True"},
                    {"Name": "NTPConfigGroup.1#NTP1", "Value": "", "Set On Import": "True"},
                    {"Name": "VNCServer.1#Enable", "Value": "Disabled", "Set On Import": "False"},
                ],
            }
        ],
    }
}


def accepted(location=TASK_PATH):
    return make_response(202, headers={"Location": location})


class MakeTests(unittest.TestCase):
    def setUp(self):
        self.codec = make_client(FakeIdrac()).scp

    def test_array_values_expand_into_sibling_attributes(self):
        component = self.codec.make("X", {"A": [1, 2]})

        self.assertEqual(component.fqdd, "X")
        self.assertEqual(
            component.to_dict(),
            {
                "FQDD": "X",
                "Attributes": [
                    {"Name": "A", "Value": "1", "Set On Import": "True"},
                    {"Name": "A", "Value": "2", "Set On Import": "True"},
                ],
            },
        )

    def test_ints_are_stringified_but_bools_and_strings_are_not(self):
        component = self.codec.make("BIOS.Setup.1-1", {"ProcCStates": "Disabled", "Port": 5901, "Flag": True})

        self.assertEqual(component.get("ProcCStates"), "Disabled")
        self.assertEqual(component.get("Port"), "5901")
        self.assertIs(component.get("Flag"), True)

    def test_nested_mapping_becomes_child_component(self):
        component = self.codec.make(
            "RAID.Integrated.1-1",
            {"RAIDresetConfig": "True", "Disks": {"Disk.Virtual.0:RAID.Integrated.1-1": {"RAIDaction": "Create"}}},
        )

        self.assertEqual(len(component.components), 1)
        child = component.components[0]
        self.assertEqual(child.fqdd, "Disk.Virtual.0:RAID.Integrated.1-1")
        self.assertEqual(child.get("RAIDaction"), "Create")
        self.assertEqual(component.get("RAIDresetConfig"), "True")
        self.assertIsNone(component.get("Disks"))

    def test_explicit_children_are_kept(self):
        child = ConfigComponent(fqdd="NIC.Integrated.1-1-1")
        component = self.codec.make("NIC.Integrated.1", components=[child, {"FQDD": "NIC.Integrated.1-2-1"}])

        self.assertEqual([c.fqdd for c in component.components], ["NIC.Integrated.1-1-1", "NIC.Integrated.1-2-1"])
        self.assertNotIn("Attributes", component.to_dict())


class ExportTests(unittest.TestCase):
    @patch("time.sleep")
    def test_export_returns_profile(self, _sleep):
        fake = FakeIdrac({
            ("POST", endpoints.EXPORT_SCP): [accepted()],
            ("GET", TASK_PATH): [
                make_response(200, json_body={"TaskState": "Running", "PercentComplete": 10}),
                make_response(200, json_body=EXPORTED),
            ],
        })
        client = make_client(fake)

        profile = client.export_profile(target="IDRAC")

        self.assertIsInstance(profile, ConfigProfile)
        self.assertEqual(profile.document, EXPORTED)
        post = fake.calls_to("POST", endpoints.EXPORT_SCP)[0]
        self.assertEqual(post.json, {"ExportFormat": "JSON", "ShareParameters": {"Target": "IDRAC"}})

    def test_payload_without_document_key_is_a_protocol_violation(self):
        fake = FakeIdrac({
            ("POST", endpoints.EXPORT_SCP): [accepted()],
            ("GET", TASK_PATH): [make_response(200, json_body={"TaskState": "Completed", "TaskStatus": "OK"})],
        })
        client = make_client(fake)

        with self.assertRaises(ProtocolViolation):
            client.export_profile()

        self.assertEqual(len(fake.calls_to("POST", endpoints.EXPORT_SCP)), 1)
        self.assertEqual(len(fake.calls_to("GET", TASK_PATH)), 1)

    def test_missing_location_is_a_protocol_violation(self):
        fake = FakeIdrac({("POST", endpoints.EXPORT_SCP): [make_response(202)]})
        client = make_client(fake)

        with self.assertRaises(ProtocolViolation):
            client.export_profile()

    @patch("time.sleep")
    def test_busy_idrac_is_resubmitted_after_vendor_wait(self, mock_sleep):
        fake = FakeIdrac({
            ("POST", endpoints.EXPORT_SCP): [
                extended_error(503, "An existing configuration job is already in progress."),
                accepted(),
            ],
            ("GET", TASK_PATH): [make_response(200, json_body=EXPORTED)],
        })
        client = make_client(fake)

        client.export_profile()

        self.assertEqual(len(fake.calls_to("POST", endpoints.EXPORT_SCP)), 2)
        mock_sleep.assert_any_call(30)

    @patch("time.sleep")
    def test_busy_submits_are_bounded(self, mock_sleep):
        fake = FakeIdrac({
            ("POST", endpoints.EXPORT_SCP): [extended_error(503, "A job operation is already running.")],
        })
        client = make_client(fake)
        client.scp.max_export_submits = 3

        with self.assertRaises(OperationTimeout):
            client.export_profile()

        self.assertEqual(len(fake.calls_to("POST", endpoints.EXPORT_SCP)), 3)
        mock_sleep.assert_called_with(60)

    def test_other_errors_surface_vendor_message(self):
        fake = FakeIdrac({("POST", endpoints.EXPORT_SCP): [extended_error(400, "Invalid ExportFormat value.")]})
        client = make_client(fake)

        with self.assertRaises(DellRedfishError) as ctx:
            client.export_profile()

        self.assertIn("Invalid ExportFormat value.", ctx.exception.message)
        self.assertEqual(ctx.exception.status_code, 400)


class ImportTests(unittest.TestCase):
    def test_import_submits_buffer_and_waits_for_task(self):
        fake = FakeIdrac({
            ("POST", endpoints.IMPORT_SCP): [accepted()],
            ("GET", TASK_PATH): [make_response(200, json_body={"TaskState": "Completed", "TaskStatus": "OK"})],
        })
        client = make_client(fake)
        component = client.make_component("BIOS.Setup.1-1", {"BootMode": "Uefi"})

        status = client.import_profile(component, target="BIOS", reboot=True)

        self.assertIs(status.state, OperationState.COMPLETED)
        body = fake.calls_to("POST", endpoints.IMPORT_SCP)[0].json
        self.assertEqual(body["ShareParameters"], {"Target": "BIOS"})
        self.assertEqual(body["ShutdownType"], "Forced")
        self.assertEqual(body["HostPowerState"], "On")
        self.assertEqual(
            json.loads(body["ImportBuffer"]),
            {"SystemConfiguration": {"Components": [{
                "FQDD": "BIOS.Setup.1-1",
                "Attributes": [{"Name": "BootMode", "Value": "Uefi", "Set On Import": "True"}],
            }]}},
        )
        self.assertIn("\n", body["ImportBuffer"])

    def test_import_without_reboot_keeps_host_off(self):
        fake = FakeIdrac({
            ("POST", endpoints.IMPORT_SCP): [accepted()],
            ("GET", TASK_PATH): [make_response(200, json_body={"TaskState": "Completed", "TaskStatus": "OK"})],
        })
        client = make_client(fake)

        client.import_profile(EXPORTED)

        body = fake.calls_to("POST", endpoints.IMPORT_SCP)[0].json
        self.assertEqual(body["HostPowerState"], "Off")
        self.assertEqual(body["ShareParameters"], {"Target": "ALL"})

    def test_body_without_location_fails_immediately(self):
        fake = FakeIdrac({
            ("POST", endpoints.IMPORT_SCP): [make_response(200, json_body={"@Message.ExtendedInfo": [
                {"Message": "The ImportBuffer is not valid.", "Resolution": "Fix it", "Severity": "Critical"},
            ]})],
        })
        client = make_client(fake)

        with self.assertRaises(OperationFailed) as ctx:
            client.import_profile(EXPORTED)

        self.assertIn("The ImportBuffer is not valid.", ctx.exception.message)
        self.assertEqual(ctx.exception.extended_info[0]["Resolution"], "Fix it")
        self.assertEqual([c for c in fake.calls if c.method == "GET" and "Tasks" in c.path], [])

    def test_empty_response_without_location_is_a_protocol_violation(self):
        fake = FakeIdrac({("POST", endpoints.IMPORT_SCP): [make_response(204)]})
        client = make_client(fake)

        with self.assertRaises(ProtocolViolation):
            client.import_profile(EXPORTED)

    @patch("time.sleep")
    def test_failed_import_task_raises(self, _sleep):
        fake = FakeIdrac({
            ("POST", endpoints.IMPORT_SCP): [accepted()],
            ("GET", TASK_PATH): [make_response(200, json_body={
                "TaskState": "Exception",
                "TaskStatus": "Critical",
                "Messages": [{"Message": "Configuration import failed"}],
            })],
        })
        client = make_client(fake)

        with self.assertRaises(OperationFailed) as ctx:
            client.import_profile(EXPORTED)

        self.assertEqual(ctx.exception.messages, ["Configuration import failed"])


class ProfileHelperTests(unittest.TestCase):
    def test_set_scp_attribute_trims_and_updates(self):
        updated = set_scp_attribute(EXPORTED, "IPv4Static.1#Address", "10.0.0.50")

        body = updated["SystemConfiguration"]
        for key in ("Model", "ServiceTag", "TimeStamp", "Comments"):
            self.assertNotIn(key, body)

        attrs = {a["Name"]: a for a in body["Components"][0]["Attributes"]}
        self.assertEqual(attrs["IPv4Static.1#Address"]["Value"], "10.0.0.50")
        self.assertNotIn("SNMP.1#AgentEnable", attrs)
        self.assertNotIn("NTPConfigGroup.1#NTP1", attrs)
        self.assertNotIn("Users.2#UserName", attrs)
        self.assertIn("VNCServer.1#Enable", attrs)

        # Original untouched
        self.assertIn("Model", EXPORTED["SystemConfiguration"])
        self.assertEqual(
            EXPORTED["SystemConfiguration"]["Components"][0]["Attributes"][0]["Value"], "10.0.0.5"
        )

    def test_set_scp_attribute_adds_missing_attribute(self):
        updated = set_scp_attribute(EXPORTED, "VNCServer.1#Port", "5901")

        attrs = updated["SystemConfiguration"]["Components"][0]["Attributes"]
        self.assertEqual(attrs[-1], {"Name": "VNCServer.1#Port", "Value": "5901", "Set On Import": "True"})

    def test_set_scp_attribute_marks_existing_for_import(self):
        updated = set_scp_attribute(EXPORTED, "VNCServer.1#Enable", "Enabled")

        attrs = {a["Name"]: a for a in updated["SystemConfiguration"]["Components"][0]["Attributes"]}
        self.assertEqual(attrs["VNCServer.1#Enable"], {
            "Name": "VNCServer.1#Enable", "Value": "Enabled", "Set On Import": "True",
        })

    def test_hash_round_trip(self):
        components = profile_components(EXPORTED)

        fqdd_map = scp_to_hash(components)

        self.assertEqual(list(fqdd_map), ["iDRAC.Embedded.1"])
        self.assertEqual(hash_to_scp(fqdd_map)[0]["Attributes"], components[0]["Attributes"])

    def test_merge_scp_merges_attributes_by_name(self):
        first = [{"FQDD": "BIOS.Setup.1-1", "Attributes": [
            {"Name": "BootMode", "Value": "Bios"},
            {"Name": "SysProfile", "Value": "PerfOptimized"},
        ]}]
        second = {"FQDD": "BIOS.Setup.1-1", "Attributes": [
            {"Name": "BootMode", "Value": "Uefi"},
            {"Name": "ProcVirtualization", "Value": "Enabled"},
        ]}

        merged = merge_scp(first, second)

        self.assertEqual(merged, [{"FQDD": "BIOS.Setup.1-1", "Attributes": [
            {"Name": "BootMode", "Value": "Uefi"},
            {"Name": "SysProfile", "Value": "PerfOptimized"},
            {"Name": "ProcVirtualization", "Value": "Enabled"},
        ]}])
        self.assertEqual(first[0]["Attributes"][0]["Value"], "Bios")

    def test_merge_scp_with_missing_side(self):
        only = [{"FQDD": "NIC.Integrated.1-1-1", "Attributes": []}]
        self.assertIs(merge_scp(None, only), only)
        self.assertIs(merge_scp(only, None), only)

    def test_normalize_enabled_value(self):
        self.assertEqual(normalize_enabled_value(None), "Disabled")
        self.assertEqual(normalize_enabled_value(False), "Disabled")
        self.assertEqual(normalize_enabled_value(True), "Enabled")
        self.assertEqual(normalize_enabled_value(" enabled "), "Enabled")
        self.assertEqual(normalize_enabled_value("off"), "Disabled")
        with self.assertRaises(ValueError):
            normalize_enabled_value(1)


if __name__ == "__main__":
    unittest.main()
