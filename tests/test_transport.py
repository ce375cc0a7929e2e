import os
import sys
import unittest

import httpx
from fastapi.testclient import TestClient

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))
sys.path.insert(0, os.path.dirname(__file__))

from adapters.base import (
    ImageCaptureOptions,
    OperatingContext,
    Platform,
    StorageClass,
    VolumeCapabilities,
    VolumeCreateOptions,
)
from core.errors import CommunicationError, ControlPlaneError, MalformedResponse, ResourceNotFound
from core.lifecycle import LifecycleState
from core.session import ReconcilerSession
from fake_control_plane import ControlPlaneState, create_app
from fakes import FakeClock
from transport.client import HttpTransport

CONTEXT   = OperatingContext(region_id="RegionOne", tenant_id="tenant-1")
ENDPOINTS = {"compute": "http://testserver/compute", "volume": "http://testserver/volume"}


class TestHttpTransport(unittest.TestCase):
    """Wire-level behaviour against a mocked httpx transport."""

    def _transport(self, handler, **kwargs):
        client = httpx.Client(transport=httpx.MockTransport(handler))
        self.addCleanup(client.close)
        return HttpTransport(ENDPOINTS, client=client, **kwargs)

    def test_token_and_url(self):
        seen = {}

        def handler(request):
            seen["url"]   = str(request.url)
            seen["token"] = request.headers.get("X-Auth-Token")
            return httpx.Response(200, json={"volume": {"id": "v1"}})

        self._transport(handler, token="secret").get_resource("volume", "/volumes", "v1")
        self.assertEqual(seen, {"url": "http://testserver/volume/volumes/v1", "token": "secret"})

    def test_missing_resource_reads_as_none(self):
        transport = self._transport(lambda request: httpx.Response(404, json={"itemNotFound": {"message": "gone"}}))
        self.assertIsNone(transport.get_resource("volume", "/volumes", "v1"))

    def test_error_status_carries_provider_message(self):
        transport = self._transport(
            lambda request: httpx.Response(409, json={"conflictingRequest": {"code": 409, "message": "busy"}})
        )
        with self.assertRaises(ControlPlaneError) as ctx:
            transport.delete_resource("volume", "/volumes", "v1")
        self.assertTrue(ctx.exception.is_conflict)
        self.assertEqual(ctx.exception.message, "busy")

    def test_connection_failure(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        with self.assertRaises(CommunicationError):
            self._transport(handler).get_resource("compute", "/images")

    def test_non_object_body(self):
        transport = self._transport(lambda request: httpx.Response(200, json=["not", "an", "object"]))
        with self.assertRaises(MalformedResponse):
            transport.get_resource("compute", "/images")

    def test_invalid_json(self):
        transport = self._transport(lambda request: httpx.Response(200, content=b"<html>"))
        with self.assertRaises(CommunicationError):
            transport.get_resource("compute", "/images")

    def test_accepted_with_location(self):
        transport = self._transport(lambda request: httpx.Response(202, headers={"Location": "http://cp/images/i1"}))
        result = transport.post_resource("compute", "/servers", "srv-1", {"createImage": {}}, sub_path="action")
        self.assertEqual(result, {"location": "http://cp/images/i1"})

    def test_unknown_service(self):
        transport = self._transport(lambda request: httpx.Response(200, json={}))
        self.assertFalse(transport.has_service("network"))
        with self.assertRaises(CommunicationError):
            transport.get_resource("network", "/ports")


class TestEndToEnd(unittest.TestCase):
    """Adapters driven through the HTTP transport against the fake control plane."""

    def setUp(self):
        self.state  = ControlPlaneState()
        self.client = TestClient(create_app(self.state))
        self.clock  = FakeClock()
        self.session = ReconcilerSession(
            transport=HttpTransport(ENDPOINTS, client=self.client),
            context=CONTEXT,
            sleep=self.clock.sleep,
            clock=self.clock,
        )

    def tearDown(self):
        self.session.close()
        self.client.close()

    def test_undersized_volume_submits_minimum(self):
        self.session.volumes.capabilities = VolumeCapabilities(minimum_size_gib=10)
        volume_id = self.session.volumes.create(VolumeCreateOptions(name="tiny", size_gib=2))
        self.assertEqual(self.state.volumes[volume_id]["size"], 10)
        self.assertEqual(self.session.volumes.get(volume_id).size_gib, 10)

    def test_volume_lifecycle(self):
        volumes = self.session.volumes
        created = volumes.create_and_wait(VolumeCreateOptions(name="data", size_gib=20, product_id="ssd-fast"))

        self.assertEqual(created.state, LifecycleState.AVAILABLE)
        self.assertEqual(created.product_id, "1")
        self.assertEqual(created.classification, StorageClass.SSD)

        volumes.attach(created.id, "srv-1", "/dev/vdb")
        self.assertEqual(volumes.get(created.id).attached_server_id, "srv-1")
        volumes.detach(created.id)
        self.assertIsNone(volumes.get(created.id).attached_server_id)

        self.state.busy[created.id] = 2
        volumes.delete(created.id)
        self.assertNotIn(created.id, self.state.volumes)
        self.assertIsNone(volumes.get(created.id))

    def test_attach_to_missing_server(self):
        volume_id = self.session.volumes.create(VolumeCreateOptions(name="data", size_gib=5))
        with self.assertRaises(ResourceNotFound):
            self.session.volumes.attach(volume_id, "srv-404", "/dev/vdb")

    def test_capture_and_delete_image(self):
        images = self.session.images
        image = images.capture(ImageCaptureOptions(name="web-snap", server_id="srv-1", description="nightly"))

        self.assertEqual(image.name, "web-snap")
        self.assertEqual(image.description, "nightly")
        self.assertEqual(image.platform, Platform.UBUNTU)
        self.assertEqual(image.owner_id, "tenant-1")
        self.assertEqual(images.get_image_ref(image.id), f"http://testserver/compute/images/{image.id}")
        self.assertEqual([i.id for i in images.list()], [image.id])

        self.state.busy[image.id] = 1
        images.delete(image.id)
        self.assertNotIn(image.id, self.state.images)

    def test_floating_ip_with_pool_fallback(self):
        self.state.require_pool = True
        addresses = self.session.floating_ips

        address_id = addresses.create()
        self.assertEqual(self.state.addresses[address_id]["pool"], "default")

        addresses.attach(address_id, "srv-1")
        self.assertEqual(addresses.get(address_id).attached_server_id, "srv-1")
        self.assertEqual(addresses.list(unassigned_only=True), [])

        addresses.detach(address_id)
        self.assertEqual(addresses.get(address_id).state, LifecycleState.AVAILABLE)

        addresses.delete(address_id)
        self.assertEqual(addresses.list(), [])

    def test_status_listings(self):
        self.session.volumes.create(VolumeCreateOptions(name="data", size_gib=5))
        self.session.floating_ips.create()

        self.assertEqual([s.state for s in self.session.volumes.list_status()], [LifecycleState.PENDING])
        self.assertEqual([s.state for s in self.session.floating_ips.list_status()], [LifecycleState.AVAILABLE])
        self.assertEqual(self.session.images.list_status(), [])


if __name__ == "__main__":
    unittest.main(verbosity=2)
