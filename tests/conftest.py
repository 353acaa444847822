from contextlib import contextmanager

from browser import StaticPage

VIDEO_URL = "https://video.fbcdn.net/x.mp4"
IMAGE_URL = "https://scontent-lax3-1.cdninstagram.com/v/t51.2885-15/452_n.jpg?stp=dst-jpg_e35&_nc_ht=x"
LARGE_IMAGE_URL = "https://scontent-lax3-1.cdninstagram.com/v/t51.2885-15/p1080x1080/453_n.jpg"
PROFILE_URL = "https://scontent-lax3-1.cdninstagram.com/v/t51.2885-19/profile_pic_s150x150.jpg"


def make_html(body: str = "", head: str = "") -> str:
    return f"<html><head>{head}</head><body>{body}</body></html>"


class RecordingSession:
    """Hands out StaticPages and counts how many were opened and released."""

    def __init__(self, html: str, page_factory=StaticPage):
        self.html = html
        self.page_factory = page_factory
        self.opened = 0
        self.closed = 0
        self.started = False

    def start(self):
        self.started = True

    def close(self):
        self.started = False

    @contextmanager
    def open_page(self):
        self.opened += 1
        try:
            yield self.page_factory(self.html)
        finally:
            self.closed += 1
