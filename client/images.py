import io
import os
import uuid

from django.conf import settings
from PIL import Image, UnidentifiedImageError

from .exceptions import InvalidImage

CONTENT_TYPES = {
    'JPEG': 'image/jpeg',
    'PNG': 'image/png',
    'WEBP': 'image/webp',
    'GIF': 'image/gif',
    'BMP': 'image/bmp',
    'TIFF': 'image/tiff',
}


class SelectedImage:
    """A photo picked from the gallery or captured by the camera."""

    def __init__(self, content, name, image_format, width, height):
        self.content = content
        self.name = name
        self.format = image_format
        self.width = width
        self.height = height
        # Identity of this selection, independent of file name
        self.key = uuid.uuid4().hex

    @property
    def content_type(self):
        return CONTENT_TYPES.get(self.format, 'application/octet-stream')

    @classmethod
    def open(cls, source, name=None):
        """
        Load an image from a path, bytes or a binary file object.

        Args:
            source: Filesystem path, raw bytes, or an object with ``read()``
            name: Upload file name; defaults to the path's base name

        Raises:
            InvalidImage: The data is not a readable image or is too small
        """
        if isinstance(source, (bytes, bytearray)):
            content = bytes(source)
        elif hasattr(source, 'read'):
            content = source.read()
            name = name or os.path.basename(getattr(source, 'name', '') or '')
        else:
            try:
                with open(source, 'rb') as f:
                    content = f.read()
            except OSError as e:
                raise InvalidImage(f'Image file not found: {source}') from e
            name = name or os.path.basename(str(source))

        try:
            img = Image.open(io.BytesIO(content))
            img.verify()
            # verify() leaves the image unusable; reopen for the metadata
            img = Image.open(io.BytesIO(content))
            width, height = img.size
            image_format = img.format
        except (UnidentifiedImageError, OSError, SyntaxError) as e:
            raise InvalidImage(f'Invalid image file: {e}') from e

        minimum = settings.MIN_IMAGE_DIMENSION
        if width < minimum or height < minimum:
            raise InvalidImage('Image is too small. Please provide a clearer image.')

        if not name:
            name = f"capture.{(image_format or 'jpg').lower()}"
        return cls(content, name, image_format, width, height)

    def as_upload(self):
        """The ``files`` entry for a multipart request."""
        return (self.name, self.content, self.content_type)

    def __repr__(self):
        return f"<SelectedImage {self.name} {self.width}x{self.height}>"
