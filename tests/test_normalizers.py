import os
import sys
import unittest
from datetime import datetime, timezone

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from adapters.base import (
    PUBLIC_OWNER,
    Architecture,
    IPVersion,
    OperatingContext,
    Platform,
    ProductRef,
    StorageClass,
)
from adapters.fields import first_of, parse_timestamp, string_map
from adapters.floating_ip import to_address, to_status as address_status
from adapters.image import to_image, to_status as image_status
from adapters.products import ProductCatalog
from adapters.volume import to_status as volume_status, to_volume
from core.errors import MalformedResponse
from core.lifecycle import LifecycleState

CONTEXT = OperatingContext(region_id="RegionOne", tenant_id="tenant-1")
CATALOG = ProductCatalog([
    ProductRef(product_id="1", display_name="ssd-fast", classification=StorageClass.SSD),
    ProductRef(product_id="2", display_name="standard", classification=StorageClass.HDD),
])


class TestFieldHelpers(unittest.TestCase):

    def test_first_alias_wins(self):
        self.assertEqual(first_of({"a": "x", "b": "y"}, ("a", "b")), "x")

    def test_null_alias_is_skipped(self):
        self.assertEqual(first_of({"a": None, "b": "y"}, ("a", "b")), "y")

    def test_integer_id_is_stringified(self):
        self.assertEqual(first_of({"id": 42}, ("id",)), "42")

    def test_structured_value_for_string_field_is_rejected(self):
        with self.assertRaises(MalformedResponse):
            first_of({"name": {"nested": True}}, ("name",))

    def test_int_field_accepts_digit_string(self):
        self.assertEqual(first_of({"size": "20"}, ("size",), int), 20)

    def test_int_field_rejects_text(self):
        with self.assertRaises(MalformedResponse):
            first_of({"size": "large"}, ("size",), int)

    def test_string_map_stringifies_scalars(self):
        self.assertEqual(string_map({"m": {"a": 1, "b": None, "c": "x"}}, "m"), {"a": "1", "c": "x"})

    def test_string_map_rejects_nested_values(self):
        with self.assertRaises(MalformedResponse):
            string_map({"m": {"a": [1, 2]}}, "m")

    def test_string_map_can_drop_nested_values(self):
        self.assertEqual(string_map({"m": {"a": {"b": 1}, "c": "x"}}, "m", strict=False), {"c": "x"})

    def test_booleans_keep_json_spelling(self):
        self.assertEqual(string_map({"m": {"on": True, "off": False}}, "m"), {"on": "true", "off": "false"})

    def test_image_tags_keep_json_booleans(self):
        image = to_image({"id": "i1", "metadata": {"protected": True}}, CONTEXT)
        self.assertEqual(image.tags["protected"], "true")

    def test_timestamp_with_zulu_suffix(self):
        self.assertEqual(parse_timestamp("2024-05-01T12:00:00Z"), datetime(2024, 5, 1, 12, tzinfo=timezone.utc))

    def test_naive_timestamp_is_utc(self):
        parsed = parse_timestamp("2024-05-01T12:00:00.000000")
        self.assertEqual(parsed.tzinfo, timezone.utc)

    def test_unparseable_timestamp_is_unknown(self):
        self.assertIsNone(parse_timestamp("last tuesday"))


class TestVolumeNormalizer(unittest.TestCase):

    def test_legacy_alias_takes_precedence(self):
        """The camelCase key is checked before the snake_case one."""
        volume = to_volume({"id": "v1", "displayName": "A", "display_name": "B"}, CONTEXT, CATALOG)
        self.assertEqual(volume.name, "A")
        self.assertEqual(volume.description, "A")

    def test_missing_name_defaults_to_id(self):
        volume = to_volume({"id": "v1"}, CONTEXT, CATALOG)
        self.assertEqual(volume.name, "v1")
        self.assertEqual(volume.description, "v1")
        self.assertEqual(volume.state, LifecycleState.PENDING)
        self.assertIsNone(volume.created_at)

    def test_missing_id_yields_none(self):
        self.assertIsNone(to_volume({"name": "orphan"}, CONTEXT, CATALOG))

    def test_full_payload(self):
        raw = {
            "id":          "v2",
            "name":        "data",
            "description": "scratch space",
            "size":        20,
            "status":      "in-use",
            "volume_type": "ssd-fast",
            "created_at":  "2024-05-01T12:00:00.000000",
            "attachments": [{"server_id": "srv-1", "device": "/dev/vdb"}],
        }
        volume = to_volume(raw, CONTEXT, CATALOG)

        self.assertEqual(volume.size_gib, 20)
        self.assertEqual(volume.state, LifecycleState.AVAILABLE)
        self.assertEqual(volume.product_id, "1")
        self.assertEqual(volume.classification, StorageClass.SSD)
        self.assertEqual(volume.attached_server_id, "srv-1")
        self.assertEqual(volume.attached_device_id, "/dev/vdb")
        self.assertEqual(volume.region_id, "RegionOne")
        self.assertEqual(volume.data_center_id, "RegionOne-a")
        self.assertEqual(volume.created_at.year, 2024)

    def test_product_resolved_by_id(self):
        volume = to_volume({"id": "v3", "volume_type": "2"}, CONTEXT, CATALOG)
        self.assertEqual(volume.product_id, "2")
        self.assertEqual(volume.classification, StorageClass.HDD)

    def test_unknown_product_is_kept_unclassified(self):
        volume = to_volume({"id": "v4", "volume_type": "mystery"}, CONTEXT, CATALOG)
        self.assertEqual(volume.product_id, "mystery")
        self.assertIsNone(volume.classification)

    def test_attachment_without_server_is_ignored(self):
        volume = to_volume({"id": "v5", "attachments": [{"device": "/dev/vdc"}]}, CONTEXT, CATALOG)
        self.assertIsNone(volume.attached_server_id)
        self.assertIsNone(volume.attached_device_id)

    def test_malformed_attachments_raise(self):
        with self.assertRaises(MalformedResponse):
            to_volume({"id": "v6", "attachments": "srv-1"}, CONTEXT, CATALOG)

    def test_status_only(self):
        status = volume_status({"id": "v7", "status": "error_deleting"})
        self.assertEqual(status.id, "v7")
        self.assertEqual(status.state, LifecycleState.ERROR)


class TestImageNormalizer(unittest.TestCase):

    def test_owner_defaults_to_tenant(self):
        image = to_image({"id": "i1", "name": "backup"}, CONTEXT)
        self.assertEqual(image.owner_id, "tenant-1")

    def test_base_images_are_public(self):
        image = to_image({"id": "i2", "name": "Ubuntu 22.04", "metadata": {"image_type": "base"}}, CONTEXT)
        self.assertEqual(image.owner_id, PUBLIC_OWNER)

    def test_metadata_owner_wins(self):
        raw = {"id": "i3", "owner": "top-level", "metadata": {"owner": "meta", "image_type": "base"}}
        self.assertEqual(to_image(raw, CONTEXT).owner_id, "meta")

    def test_platform_from_name(self):
        image = to_image({"id": "i4", "name": "CentOS 7 x86_64"}, CONTEXT)
        self.assertEqual(image.platform, Platform.CENT_OS)

    def test_os_type_refines_generic_unix(self):
        raw = {"id": "i5", "name": "golden", "metadata": {"reconciler.platform": "UNIX", "os_type": "debian"}}
        self.assertEqual(to_image(raw, CONTEXT).platform, Platform.DEBIAN)

    def test_platform_hint_is_kept(self):
        raw = {"id": "i6", "name": "golden", "metadata": {"reconciler.platform": "WINDOWS"}}
        self.assertEqual(to_image(raw, CONTEXT).platform, Platform.WINDOWS)

    def test_architecture_from_metadata(self):
        raw = {"id": "i7", "metadata": {"architecture": "i686"}}
        self.assertEqual(to_image(raw, CONTEXT).architecture, Architecture.I32)
        self.assertEqual(to_image({"id": "i8"}, CONTEXT).architecture, Architecture.I64)

    def test_fields_and_tags(self):
        raw = {
            "id":       "i9",
            "name":     "web",
            "status":   "SAVING",
            "minDisk":  20,
            "created":  "2024-05-01T12:00:00Z",
            "metadata": {"reconciler.description": "web tier", "team": "ops"},
        }
        image = to_image(raw, CONTEXT)

        self.assertEqual(image.description, "web tier")
        self.assertEqual(image.state, LifecycleState.PENDING)
        self.assertEqual(image.minimum_disk_size_gib, 20)
        self.assertEqual(image.tags["team"], "ops")
        self.assertIsNotNone(image.created_at)

    def test_status_only_skips_foreign_images(self):
        self.assertIsNone(image_status({"id": "i10", "owner": "someone-else", "status": "ACTIVE"}, CONTEXT))
        status = image_status({"id": "i11", "status": "ACTIVE"}, CONTEXT)
        self.assertEqual(status.state, LifecycleState.ACTIVE)


class TestAddressNormalizer(unittest.TestCase):

    def test_free_address(self):
        address = to_address({"id": "f1", "ip": "203.0.113.5", "pool": "public"}, CONTEXT)
        self.assertEqual(address.address, "203.0.113.5")
        self.assertEqual(address.state, LifecycleState.AVAILABLE)
        self.assertEqual(address.version, IPVersion.IPV4)
        self.assertIsNone(address.attached_server_id)

    def test_attached_address(self):
        address = to_address({"id": "f2", "ip": "203.0.113.6", "instance_id": "srv-1"}, CONTEXT)
        self.assertEqual(address.attached_server_id, "srv-1")
        self.assertEqual(address.state, LifecycleState.ACTIVE)

    def test_address_without_ip_is_skipped(self):
        self.assertIsNone(to_address({"id": "f3"}, CONTEXT))

    def test_status_only(self):
        self.assertEqual(address_status({"id": "f4", "instance_id": ""}).state, LifecycleState.AVAILABLE)
        self.assertEqual(address_status({"id": "f5", "instance_id": "srv-1"}).state, LifecycleState.ACTIVE)


if __name__ == "__main__":
    unittest.main(verbosity=2)
