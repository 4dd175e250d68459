import unittest
from unittest import mock

import requests

import inference
from errors import InvalidResponse, ServiceUnreachable
from inference import OllamaClient


def response(status=200, payload=None, json_error=False):
    reply = mock.Mock()
    reply.ok = 200 <= status < 300
    reply.status_code = status
    reply.text = "error body"
    if json_error:
        reply.json.side_effect = ValueError("not json")
    else:
        reply.json.return_value = payload
    return reply


class TestGenerate(unittest.TestCase):
    def setUp(self):
        self.session = mock.Mock(spec=requests.Session)
        self.client = OllamaClient("http://ollama:11434/", timeout=42, session=self.session)

    def test_posts_generation_request(self):
        self.session.post.return_value = response(payload={"response": "ok", "images": ["aGVsbG8="]})

        images = self.client.generate("llava", "Enhance. Strength: 0.7", ["ZnJhbWU="])

        self.assertEqual(images, ["aGVsbG8="])
        self.session.post.assert_called_once_with(
            "http://ollama:11434/api/generate",
            json={
                "model": "llava",
                "prompt": "Enhance. Strength: 0.7",
                "images": ["ZnJhbWU="],
                "stream": False,
                "options": inference.GENERATION_OPTIONS,
            },
            timeout=42,
        )

    def test_reply_without_images_is_empty(self):
        self.session.post.return_value = response(payload={"response": "a description"})
        self.assertEqual(self.client.generate("llava", "prompt", ["x"]), [])

    def test_connection_errors_are_unreachable(self):
        for error in (requests.exceptions.ConnectionError("refused"), requests.exceptions.Timeout("slow")):
            with self.subTest(error=error):
                self.session.post.side_effect = error
                with self.assertRaises(ServiceUnreachable):
                    self.client.generate("llava", "prompt")

    def test_http_error_is_invalid_response(self):
        self.session.post.return_value = response(status=500)
        with self.assertRaises(InvalidResponse):
            self.client.generate("llava", "prompt")

    def test_non_json_body_is_invalid_response(self):
        self.session.post.return_value = response(json_error=True)
        with self.assertRaises(InvalidResponse):
            self.client.generate("llava", "prompt")

    def test_non_object_payload_is_invalid_response(self):
        self.session.post.return_value = response(payload=["images"])
        with self.assertRaises(InvalidResponse):
            self.client.generate("llava", "prompt")


class TestModels(unittest.TestCase):
    def setUp(self):
        self.session = mock.Mock(spec=requests.Session)
        self.client = OllamaClient(session=self.session)

    def test_list_models(self):
        self.session.get.return_value = response(payload={"models": [{"name": "llava:latest"}, {"size": 1}]})
        self.assertEqual(self.client.list_models(), ["llava:latest"])

    def test_has_model_matches_tagged_names(self):
        self.session.get.return_value = response(payload={"models": [{"name": "llava:13b"}]})
        self.assertTrue(self.client.has_model("llava"))
        self.assertFalse(self.client.has_model("bakllava"))

    def test_is_running_false_when_unreachable(self):
        self.session.get.side_effect = requests.exceptions.ConnectionError("refused")
        self.assertFalse(self.client.is_running())
        self.assertFalse(self.client.has_model("llava"))

    def test_is_running_true_on_ok(self):
        self.session.get.return_value = response(payload={"models": []})
        self.assertTrue(self.client.is_running())


if __name__ == "__main__":
    unittest.main()
