import datetime
from typing import Dict, Optional

IMAGE_EXTENSIONS = {
    "image/jpeg": "jpg",
    "image/jpg": "jpg",
    "image/png": "png",
    "image/gif": "gif",
    "image/webp": "webp",
    "image/bmp": "bmp",
    "image/svg+xml": "svg",
}


def make_unique_name(name: str, used: Dict[str, int]) -> str:
    '''
    The function returns a name that is unique within one archive-building pass.
    A repeated name becomes "stem-2.ext", "stem-3.ext", ... The counter is stored
    against the original name so later collisions resume from the last value.
    Not safe for concurrent callers.
    Input:
        - name: desired file name
        - used: mapping of names already handed out in this pass (mutated)
    Output: the reserved unique name
    '''
    existing = used.get(name)
    if not existing:
        used[name] = 1
        return name

    dot = name.rfind(".")
    # a leading dot (".bashrc") is part of the stem, not an extension
    stem, ext = (name[:dot], name[dot:]) if dot > 0 else (name, "")

    counter = existing + 1
    candidate = f"{stem}-{counter}{ext}"
    while candidate in used:
        counter += 1
        candidate = f"{stem}-{counter}{ext}"
    used[name] = counter
    used[candidate] = 1
    return candidate


def image_extension(mime_type: Optional[str]) -> str:
    ''' This function guesses a file extension for an image MIME type '''
    if mime_type and mime_type in IMAGE_EXTENSIONS:
        return IMAGE_EXTENSIONS[mime_type]
    if mime_type and mime_type.startswith("image/"):
        guess = mime_type.split("/", 1)[1]
        if guess:
            return guess
    return "img"


def fallback_image_name(index: int, mime_type: Optional[str]) -> str:
    ''' Name used for an image that has no original name, index is 0-based '''
    return f"image-{index + 1}.{image_extension(mime_type)}"


def archive_filename(now: Optional[datetime.datetime] = None) -> str:
    '''
    The function returns the suggested download name for an image archive,
    e.g. "images-202610191234.zip" (UTC, minute precision, separators stripped).
    '''
    now = now or datetime.datetime.now(datetime.timezone.utc)
    if now.tzinfo is not None:
        now = now.astimezone(datetime.timezone.utc)
    stamp = now.strftime("%Y-%m-%dT%H:%M")
    for sep in "-:T":
        stamp = stamp.replace(sep, "")
    return f"images-{stamp}.zip"
