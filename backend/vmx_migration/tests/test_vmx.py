from __future__ import annotations

from django.test import SimpleTestCase

from vmx_migration.vmx import guest_os_label, parse_vmx, vmx_bool, vmx_int

SAMPLE_VMX = """.encoding = "UTF-8"
config.version = "8"
displayName = "web01"
guestOS = "windows2019srv-64"
numvcpus = "4"
memSize = "8192"
scsi0:0.fileName = "web01.vmdk"
this line is not a setting
ethernet0.present = "TRUE"
"""


class ParseVmxTests(SimpleTestCase):
    def test_parses_quoted_values(self):
        values = parse_vmx(SAMPLE_VMX)
        self.assertEqual(values["displayName"], "web01")
        self.assertEqual(values["scsi0:0.fileName"], "web01.vmdk")

    def test_keys_are_case_insensitive(self):
        values = parse_vmx(SAMPLE_VMX)
        self.assertEqual(values["DISPLAYNAME"], "web01")
        self.assertEqual(values["memsize"], "8192")
        self.assertIn("GUESTOS", values)

    def test_malformed_lines_are_ignored(self):
        values = parse_vmx('broken = unquoted\nname = "ok"\n= "nokey"\n')
        self.assertEqual(dict(values), {"name": "ok"})

    def test_empty_input_yields_empty_mapping(self):
        self.assertEqual(len(parse_vmx("")), 0)
        self.assertEqual(len(parse_vmx(None)), 0)

    def test_later_duplicate_wins(self):
        values = parse_vmx('memsize = "1024"\nMemSize = "2048"\n')
        self.assertEqual(values["memsize"], "2048")

    def test_surrounding_whitespace_tolerated(self):
        values = parse_vmx('   numvcpus   =   "2"   \r\n')
        self.assertEqual(values["numvcpus"], "2")

    def test_int_and_bool_helpers(self):
        values = parse_vmx('a = "12"\nb = "x"\nc = "TRUE"\nd = "0"\ne = "maybe"\n')
        self.assertEqual(vmx_int(values, "a"), 12)
        self.assertIsNone(vmx_int(values, "b"))
        self.assertIsNone(vmx_int(values, "missing"))
        self.assertTrue(vmx_bool(values, "c"))
        self.assertFalse(vmx_bool(values, "d"))
        self.assertIsNone(vmx_bool(values, "e"))
        self.assertIsNone(vmx_bool(values, "missing"))


class GuestOsLabelTests(SimpleTestCase):
    def test_exact_table(self):
        self.assertEqual(guest_os_label("windows9srv-64"), "Windows Server 2016")
        self.assertEqual(guest_os_label("Windows2019srv-64"), "Windows Server 2019")
        self.assertEqual(guest_os_label("ubuntu-64"), "Ubuntu")
        self.assertEqual(guest_os_label("vmkernel7"), "VMware ESXi")

    def test_server_rules(self):
        self.assertEqual(guest_os_label("windows2022srv_64"), "Windows Server 2022")
        self.assertEqual(guest_os_label("winNetDatacenter"), "Windows Server 2003")
        self.assertEqual(guest_os_label("windowsserver-future"), "Windows Server (windowsserver-future)")

    def test_guest_rules(self):
        self.assertEqual(guest_os_label("windows11_64"), "Windows 11")
        self.assertEqual(guest_os_label("rhel10-64"), "Red Hat Enterprise Linux")
        self.assertEqual(guest_os_label("freebsd14-64"), "FreeBSD")
        self.assertEqual(guest_os_label("darwin23-64"), "macOS")
        self.assertEqual(guest_os_label("vmkernel9"), "VMware ESXi")
        self.assertEqual(guest_os_label("other6xlinux-64"), "Linux")

    def test_unknown_and_empty(self):
        self.assertEqual(guest_os_label("plan9"), "Other (plan9)")
        self.assertEqual(guest_os_label(""), "Other")
        self.assertEqual(guest_os_label(None), "Other")
