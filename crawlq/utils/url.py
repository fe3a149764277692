from yarl import URL


def urljoin(base_url: str, href: str) -> str:
    """Resolve `href` against `base_url`.

    Absolute hrefs are returned as given. URLs are not normalized.
    """
    href = href.strip()
    if not href:
        return base_url
    try:
        ref = URL(href)
        if ref.is_absolute() and ref.scheme:
            return href
        return str(URL(base_url).join(ref))
    except ValueError:
        return base_url.rstrip("/") + "/" + href.lstrip("/")

