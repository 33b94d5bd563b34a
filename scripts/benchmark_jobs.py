from __future__ import annotations

import argparse
import io
import time

import requests
from PIL import Image, ImageDraw


def make_image() -> bytes:
    img = Image.new('RGB', (256, 256), 'white')
    draw = ImageDraw.Draw(img)
    draw.ellipse((40, 40, 220, 220), fill='green', outline='black', width=6)
    out = io.BytesIO()
    img.save(out, format='PNG')
    return out.getvalue()


def main() -> None:
    parser = argparse.ArgumentParser()
    parser.add_argument('--url', default='http://127.0.0.1:8000')
    parser.add_argument('--count', type=int, default=10)
    parser.add_argument('--style', default='Flat')
    parser.add_argument('--sync', action='store_true', help='call /api/remove-bg instead of enqueueing jobs')
    args = parser.parse_args()

    image = make_image()
    endpoint = '/api/remove-bg' if args.sync else '/api/jobs/remove-bg'
    started = time.time()

    for _ in range(args.count):
        resp = requests.post(
            f"{args.url}{endpoint}",
            files={'file': ('bench.png', image, 'image/png')},
            data={'style': args.style},
            timeout=30,
        )
        resp.raise_for_status()

    elapsed = time.time() - started
    print({'submitted': args.count, 'endpoint': endpoint, 'elapsed_sec': round(elapsed, 2), 'rps': round(args.count / elapsed, 2)})


if __name__ == '__main__':
    main()
