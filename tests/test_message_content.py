from inbox.services.message_content import (
    LocationContent,
    MediaContent,
    MessageKind,
    PlaceholderContent,
    TextContent,
    parse_message_content,
)


class TestParseMessageContent:
    def test_text(self):
        content = parse_message_content({"type": "text", "text": {"body": "Hello"}})
        assert isinstance(content, TextContent)
        assert content.to_fields() == {"kind": "text", "body": "Hello"}

    def test_image_with_caption_and_default_mime(self):
        content = parse_message_content({"type": "image", "image": {"id": "MEDIA1", "caption": "look"}})
        assert isinstance(content, MediaContent)
        fields = content.to_fields()
        assert fields["kind"] == "image"
        assert fields["body"] is None
        assert fields["caption"] == "look"
        assert fields["media_id"] == "MEDIA1"
        assert fields["media_mime_type"] == "image/jpeg"

    def test_document_keeps_filename(self):
        content = parse_message_content(
            {
                "type": "document",
                "document": {"id": "DOC1", "mime_type": "application/pdf", "filename": "invoice.pdf", "caption": "c"},
            }
        )
        fields = content.to_fields()
        assert fields["media_filename"] == "invoice.pdf"
        assert fields["media_mime_type"] == "application/pdf"
        assert fields["caption"] == "c"

    def test_audio_default_mime_and_no_caption(self):
        fields = parse_message_content({"type": "audio", "audio": {"id": "A1", "caption": "ignored"}}).to_fields()
        assert fields["media_mime_type"] == "audio/ogg"
        assert fields["caption"] is None

    def test_video_and_sticker_defaults(self):
        assert parse_message_content({"type": "video", "video": {"id": "V"}}).mime_type == "video/mp4"
        assert parse_message_content({"type": "sticker", "sticker": {"id": "S"}}).mime_type == "image/webp"

    def test_location(self):
        content = parse_message_content(
            {
                "type": "location",
                "location": {"latitude": 52.52, "longitude": 13.405, "name": "Shop", "address": "Main St 1"},
            }
        )
        assert isinstance(content, LocationContent)
        fields = content.to_fields()
        assert fields["body"] == "📍 Location shared"
        assert fields["latitude"] == 52.52
        assert fields["location_name"] == "Shop"

    def test_contacts_placeholder(self):
        content = parse_message_content({"type": "contacts", "contacts": [{"name": {}}]})
        assert content.to_fields() == {"kind": "contacts", "body": "📇 Contact shared"}

    def test_interactive_button_reply_title(self):
        content = parse_message_content(
            {"type": "interactive", "interactive": {"type": "button_reply", "button_reply": {"id": "b1", "title": "Yes"}}}
        )
        assert content.body == "Yes"

    def test_interactive_list_reply_title(self):
        content = parse_message_content(
            {"type": "interactive", "interactive": {"type": "list_reply", "list_reply": {"id": "l1", "title": "Serum"}}}
        )
        assert content.body == "Serum"

    def test_interactive_without_title(self):
        assert parse_message_content({"type": "interactive", "interactive": {}}).body == "Interactive response"

    def test_reaction(self):
        assert parse_message_content({"type": "reaction", "reaction": {"emoji": "❤️"}}).body == "❤️"
        assert parse_message_content({"type": "reaction", "reaction": {}}).body == "👍"

    def test_unknown_type_stored_as_text(self):
        content = parse_message_content({"type": "order", "order": {}})
        assert isinstance(content, PlaceholderContent)
        assert content.kind == MessageKind.TEXT
        assert content.body == "[Unsupported message type: order]"

    def test_missing_type(self):
        assert parse_message_content({}).body == "[Unsupported message type: unknown]"
