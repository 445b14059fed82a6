"""Supabase Storage adapter for meal photos."""

from dataclasses import dataclass

from supabase import Client

from meal_logger.services.photos import PhotoStorage


@dataclass
class SupabasePhotoStorage(PhotoStorage):
    """Stores photos in a public Supabase Storage bucket."""

    client: Client
    bucket: str

    def upload(self, path: str, content: bytes, content_type: str) -> str:
        """Upload the bytes and return the bucket's public URL for them."""
        bucket = self.client.storage.from_(self.bucket)
        bucket.upload(
            path=path, file=content, file_options={"content-type": content_type}
        )
        return bucket.get_public_url(path)
