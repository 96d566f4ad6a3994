from zlog.services.content_rewriter import rewrite_content, rewrite_url

ORIGIN = "https://origin.example"


def test_root_relative_markdown_image_is_absolutized():
    rewritten = rewrite_content("![x](/uploads/a.png)", ORIGIN)
    assert "https://origin.example/uploads/a.png" in rewritten
    assert rewritten == "![x](https://origin.example/uploads/a.png)"


def test_markdown_image_title_is_preserved():
    rewritten = rewrite_content('![cat](/img/cat.jpg "A cat")', f"{ORIGIN}/")
    assert rewritten == '![cat](https://origin.example/img/cat.jpg "A cat")'


def test_html_src_attributes_with_either_quote_are_rewritten():
    content = "<img src=\"/uploads/b.png\"> <img src='/img/c.png' alt='c'>"
    rewritten = rewrite_content(content, ORIGIN)
    assert 'src="https://origin.example/uploads/b.png"' in rewritten
    assert "src='https://origin.example/img/c.png'" in rewritten


def test_third_party_urls_are_untouched():
    content = (
        "![x](https://cdn.example.net/uploads/a.png)\n"
        '<img src="https://images.example.org/img/b.png">'
    )
    assert rewrite_content(content, ORIGIN) == content


def test_absolute_asset_on_wrong_host_is_reanchored():
    content = (
        "![a](http://localhost:3000/uploads/a.png?w=100)\n"
        '<img src="http://192.168.1.5/img/b.png#top">\n'
        "![c](http://origin.example:8080/uploads/c.png)"
    )
    rewritten = rewrite_content(content, ORIGIN)
    assert "![a](https://origin.example/uploads/a.png?w=100)" in rewritten
    assert 'src="https://origin.example/img/b.png#top"' in rewritten
    assert "![c](https://origin.example/uploads/c.png)" in rewritten


def test_origin_host_under_other_scheme_is_reanchored():
    rewritten = rewrite_content("![a](http://origin.example/uploads/a.png)", ORIGIN)
    assert rewritten == "![a](https://origin.example/uploads/a.png)"


def test_non_asset_paths_and_protocol_relative_urls_are_untouched():
    content = "![a](/static/a.png) ![b](//cdn.example.net/uploads/b.png) [link](/uploads/doc.pdf)"
    assert rewrite_content(content, ORIGIN) == content


def test_rewrite_url_handles_cover_images():
    assert rewrite_url("/covers/hero.jpg", ORIGIN) == "https://origin.example/covers/hero.jpg"
    assert rewrite_url("http://127.0.0.1/uploads/hero.jpg", ORIGIN) == (
        "https://origin.example/uploads/hero.jpg"
    )
    assert rewrite_url("https://cdn.example.net/hero.jpg", ORIGIN) == (
        "https://cdn.example.net/hero.jpg"
    )
    assert rewrite_url(None, ORIGIN) is None
    assert rewrite_url("", ORIGIN) == ""
