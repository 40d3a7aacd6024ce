"""Tests for attachment classification."""

from intakebot.domain.files import Attachment, classify_attachment, format_duration, to_buffered_ref


def _att(**kwargs):
    kwargs.setdefault("file_id", "f1")
    return Attachment(**kwargs)


class TestClassifyAttachment:
    def test_document_is_resume(self):
        assert classify_attachment(_att(media_type="document", file_name="cv.pdf")) == "resume"

    def test_any_document_is_resume(self):
        assert classify_attachment(_att(media_type="document", file_name="notes.txt")) == "resume"

    def test_video_media_type(self):
        assert classify_attachment(_att(media_type="video")) == "video"

    def test_video_mime_wins_over_document(self):
        att = _att(media_type="document", file_name="intro.mp4", mime_type="video/mp4")
        assert classify_attachment(att) == "video"

    def test_word_mime_is_resume(self):
        att = _att(media_type="image", mime_type="application/msword")
        assert classify_attachment(att) == "resume"

    def test_resume_extension(self):
        assert classify_attachment(_att(media_type="audio", file_name="CV.DOCX")) == "resume"

    def test_photo(self):
        assert classify_attachment(_att(media_type="photo", mime_type="image/jpeg")) == "photo"

    def test_image(self):
        assert classify_attachment(_att(media_type="image", mime_type="image/png")) == "photo"

    def test_audio_unrecognized(self):
        assert classify_attachment(_att(media_type="audio", mime_type="audio/ogg")) is None


class TestBufferedRef:
    def test_duration_kept_for_video_only(self):
        att = _att(media_type="video", duration=95)
        assert to_buffered_ref(att, "video", "u").duration == 95
        assert to_buffered_ref(att, "resume", "u").duration is None

    def test_with_url(self):
        ref = to_buffered_ref(_att(media_type="document", file_name="cv.pdf"), "resume", None)
        updated = ref.with_url("https://x/cv.pdf")
        assert updated.file_url == "https://x/cv.pdf"
        assert updated.file_name == "cv.pdf"
        assert ref.file_url is None


def test_format_duration():
    assert format_duration(95) == "1:35"
    assert format_duration(5) == "0:05"
    assert format_duration(None) == ""
