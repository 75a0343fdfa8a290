"""
Exception hierarchy for the fetch pipeline.

Transport failures are not exceptions: they come back as unsuccessful
HttpResponse values. Payload errors consume a retry attempt like a failed
request does, while not-found conditions are terminal and reported
immediately.
"""


class VidmetaError(Exception):
    """Base class for all vidmeta errors."""


class PayloadError(VidmetaError):
    """A response arrived but its body could not be parsed."""


class CaptionMarkupError(PayloadError):
    """The watch page or timed-text markup did not match the expected format."""


class NotFoundError(VidmetaError):
    """A required resource does not exist. Never retried."""


class NoServerAvailable(NotFoundError):
    """No mirror override is configured and discovery found no usable instance."""

    def __init__(self):
        super().__init__("No Invidious server available (no override set, discovery returned nothing)")


class NoCaptionTracks(NotFoundError):
    """The video lists no caption tracks."""

    def __init__(self, video_id: str):
        self.video_id = video_id
        super().__init__(f"No captions found for video {video_id}")


class NoMatchingLanguage(NotFoundError):
    """Caption tracks exist but none matches the language preferences."""

    def __init__(self, video_id: str, languages: list[str]):
        self.video_id = video_id
        self.languages = languages
        super().__init__(
            f"No captions in languages {', '.join(languages)} for video {video_id}"
        )


class RecordNotFound(NotFoundError):
    """Nothing has been fetched for the video yet."""

    def __init__(self, video_id: str, what: str = "metadata"):
        self.video_id = video_id
        super().__init__(f"No {what} cached for video {video_id}")
