"""
Platform binding authorization.
"""

import unittest

from contentproof.binding import BindingAuthorizer, BindingRequest
from contentproof.errors import AuthorizationError, ValidationError


def linked(*providers):
    calls = []

    def lookup(caller, provider):
        calls.append((caller, provider))
        return provider in providers

    lookup.calls = calls
    return lookup


class TestBindingAuthorizer(unittest.TestCase):

    def test_youtube_requires_google(self):
        authorizer = BindingAuthorizer(linked())
        decision = authorizer.authorize("user-1", "youtube", "dQw4w9WgXcQ")
        self.assertFalse(decision.allowed)
        self.assertEqual(decision.missing_provider, "google")
        self.assertEqual(decision.to_error().to_dict()["missingProvider"], "google")

    def test_linked_provider_allows(self):
        lookup = linked("google")
        decision = BindingAuthorizer(lookup).authorize("user-1", "YouTube", "abc")
        self.assertTrue(decision.allowed)
        self.assertEqual(lookup.calls, [("user-1", "google")])

    def test_custom_mapping(self):
        authorizer = BindingAuthorizer(linked(), platform_providers={"video": "video-provider"})
        decision = authorizer.authorize("user-1", "video", "v1")
        self.assertEqual(decision.missing_provider, "video-provider")
        # The default mapping no longer applies
        self.assertTrue(authorizer.authorize("user-1", "youtube", "abc").allowed)

    def test_unmapped_platform_needs_no_provider(self):
        lookup = linked()
        decision = BindingAuthorizer(lookup).authorize("user-1", "personal-site", "https://me.example")
        self.assertTrue(decision.allowed)
        self.assertEqual(lookup.calls, [])

    def test_batch_is_all_or_nothing(self):
        authorizer = BindingAuthorizer(linked("github"))
        decision = authorizer.authorize_many("user-1", [
            {"platform": "github", "platformId": "octo/repo"},
            {"platform": "x", "platformId": "@octo"},
        ])
        self.assertFalse(decision.allowed)
        self.assertEqual(decision.missing_provider, "twitter")
        self.assertEqual(decision.platform, "x")

    def test_batch_shares_provider_lookups(self):
        lookup = linked("twitter")
        decision = BindingAuthorizer(lookup).authorize_many("user-1", [
            BindingRequest("x", "@a"),
            BindingRequest("twitter", "@b"),
        ])
        self.assertTrue(decision.allowed)
        self.assertEqual(lookup.calls, [("user-1", "twitter")])

    def test_require_raises(self):
        authorizer = BindingAuthorizer(linked())
        with self.assertRaises(AuthorizationError) as ctx:
            authorizer.require("user-1", [{"platform": "github", "platformId": "octo"}])
        self.assertEqual(ctx.exception.missing_provider, "github")

    def test_malformed_bindings(self):
        authorizer = BindingAuthorizer(linked("google"))
        with self.assertRaises(ValidationError):
            authorizer.authorize("user-1", "", "abc")
        with self.assertRaises(ValidationError):
            authorizer.authorize("user-1", "youtube", "  ")
        with self.assertRaises(ValidationError):
            authorizer.authorize("", "youtube", "abc")


if __name__ == "__main__":
    unittest.main()
