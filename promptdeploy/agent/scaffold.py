"""Fixed Next.js project skeleton written around the generated page.

Paths are relative to the project directory inside the environment.
"""

from __future__ import annotations

import json

PACKAGE_JSON = {
    "name": "generated-app",
    "version": "1.0.0",
    "private": True,
    "scripts": {
        "dev": "next dev",
        "build": "next build",
        "start": "next start",
    },
    "dependencies": {
        "next": "14.2.18",
        "react": "^18.3.0",
        "react-dom": "^18.3.0",
    },
    "devDependencies": {
        "@types/node": "^20",
        "@types/react": "^18",
        "@types/react-dom": "^18",
        "typescript": "^5",
        "tailwindcss": "^3.4.0",
        "autoprefixer": "^10.4.16",
        "postcss": "^8.4.31",
    },
}

NEXT_CONFIG = """/** @type {import('next').NextConfig} */
const nextConfig = {}

module.exports = nextConfig
"""

TSCONFIG = {
    "compilerOptions": {
        "target": "ES2017",
        "lib": ["dom", "dom.iterable", "esnext"],
        "allowJs": True,
        "skipLibCheck": True,
        "strict": False,
        "noEmit": True,
        "esModuleInterop": True,
        "module": "esnext",
        "moduleResolution": "bundler",
        "resolveJsonModule": True,
        "isolatedModules": True,
        "jsx": "preserve",
        "incremental": True,
        "plugins": [{"name": "next"}],
        "paths": {"@/*": ["./*"]},
    },
    "include": ["next-env.d.ts", "**/*.ts", "**/*.tsx", ".next/types/**/*.ts"],
    "exclude": ["node_modules"],
}

TAILWIND_CONFIG = """import type { Config } from "tailwindcss";

const config: Config = {
  content: [
    "./pages/**/*.{js,ts,jsx,tsx,mdx}",
    "./components/**/*.{js,ts,jsx,tsx,mdx}",
    "./app/**/*.{js,ts,jsx,tsx,mdx}",
  ],
  theme: {
    extend: {},
  },
  plugins: [],
};
export default config;
"""

POSTCSS_CONFIG = """module.exports = {
  plugins: {
    tailwindcss: {},
    autoprefixer: {},
  },
}
"""

GLOBALS_CSS = """@tailwind base;
@tailwind components;
@tailwind utilities;
"""

LAYOUT_TSX = """import './globals.css'
import type { Metadata } from 'next'

export const metadata: Metadata = {
  title: 'Generated App',
  description: 'AI Generated Application',
}

export default function RootLayout({
  children,
}: {
  children: React.ReactNode
}) {
  return (
    <html lang="en">
      <body>{children}</body>
    </html>
  )
}
"""

# Directories created before any file is written
PROJECT_DIRECTORIES = ["", "app"]


def project_files(generated_source: str) -> list[tuple[str, str]]:
    """Return (relative path, content) pairs in write order.

    The generated page is written first so it shows up first in the
    file log.
    """
    return [
        ("app/page.tsx", generated_source),
        ("package.json", json.dumps(PACKAGE_JSON, indent=2)),
        ("next.config.js", NEXT_CONFIG),
        ("tsconfig.json", json.dumps(TSCONFIG, indent=2)),
        ("tailwind.config.ts", TAILWIND_CONFIG),
        ("postcss.config.js", POSTCSS_CONFIG),
        ("app/globals.css", GLOBALS_CSS),
        ("app/layout.tsx", LAYOUT_TSX),
    ]
