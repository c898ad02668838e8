"""
SigKit URL Transformer - Normalizes format records to a single playable URL
"""
from typing import Callable, Dict, List, MutableMapping, Optional, Tuple
from urllib.parse import parse_qsl, unquote, urlencode, urlsplit, urlunsplit

from errors import FormatError

Transform = Callable[[str], str]

CIPHER_FIELDS = ("signatureCipher", "cipher")
DEFAULT_SIGNATURE_PARAM = "sig"


def parse_query(query: str) -> Dict[str, str]:
    """Decode a query string; the first occurrence of a repeated key wins"""
    args: Dict[str, str] = {}
    for key, value in parse_qsl(query, keep_blank_values=True):
        args.setdefault(key, value)
    return args


def set_query_param(url: str, name: str, value: str) -> str:
    """
    Set one query parameter, keeping every other parameter and its position.
    Replaces the first occurrence and drops duplicates, or appends.
    """
    parts = urlsplit(url)
    params: List[Tuple[str, str]] = []
    replaced = False

    for key, current in parse_qsl(parts.query, keep_blank_values=True):
        if key != name:
            params.append((key, current))
        elif not replaced:
            params.append((key, value))
            replaced = True

    if not replaced:
        params.append((name, value))

    return urlunsplit(parts._replace(query=urlencode(params)))


def decipher(raw_url: str, decipher_transform: Transform) -> Optional[str]:
    """
    Resolve a cipher payload (s, sp, url) into a signed URL.
    Payloads without `s` are already playable: their url is returned unchanged.
    """
    args = parse_query(raw_url)
    if not args.get("s"):
        return args.get("url")

    url = unquote(args.get("url", ""))
    signature = decipher_transform(args["s"])
    return set_query_param(url, args.get("sp") or DEFAULT_SIGNATURE_PARAM, signature)


def n_transform(url: str, n_transform_transform: Optional[Transform]) -> str:
    """Replace the throttling `n` parameter, if present and a transform is available"""
    n = parse_query(urlsplit(url).query).get("n")
    if not n or n_transform_transform is None:
        return url

    return set_query_param(url, "n", n_transform_transform(n))


def is_ciphered(fmt: MutableMapping) -> bool:
    return not fmt.get("url") and any(fmt.get(field) for field in CIPHER_FIELDS)


def resolve(
    fmt: MutableMapping,
    decipher_transform: Transform,
    n_transform_transform: Optional[Transform] = None
) -> MutableMapping:
    """
    Mutate a format so it exposes exactly one resolved `url`.
    Cipher fields are removed afterwards.
    """
    if is_ciphered(fmt):
        payload = next(fmt[field] for field in CIPHER_FIELDS if fmt.get(field))
        url = decipher(payload, decipher_transform)
        if not url:
            raise FormatError("Cipher payload carries no url")
    elif fmt.get("url"):
        url = fmt["url"]
    else:
        raise FormatError(
            "Format has neither url nor signatureCipher/cipher (itag=%s)" % fmt.get("itag")
        )

    fmt["url"] = n_transform(url, n_transform_transform)
    for field in CIPHER_FIELDS:
        fmt.pop(field, None)

    return fmt
